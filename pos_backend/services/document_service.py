from __future__ import annotations

import logging
from collections.abc import Callable

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from pos_backend.errors import NotFoundError
from pos_backend.models import Invoice, InvoiceItem, Store
from pos_backend.services.document_renderer import DocumentLine, DocumentRenderer, InvoiceDocument

logger = logging.getLogger(__name__)


def build_invoice_document(db: Session, invoice_id: int) -> InvoiceDocument:
    invoice = db.execute(
        select(Invoice)
        .options(selectinload(Invoice.items).joinedload(InvoiceItem.product))
        .where(Invoice.id == invoice_id)
    ).scalar_one_or_none()
    if not invoice:
        raise NotFoundError('Invoice not found', invoice_id=invoice_id)
    store = db.get(Store, invoice.store_id)
    return InvoiceDocument(
        invoice_id=invoice.id,
        store_name=store.name if store else str(invoice.store_id),
        store_city=store.city if store else None,
        store_region=store.region if store else None,
        status=invoice.status.value,
        created_at=invoice.created_at,
        lines=[
            DocumentLine(
                sku=item.product.sku,
                name=item.product.name,
                qty=item.qty,
                unit_price=item.unit_price,
                line_total=item.line_total,
            )
            for item in invoice.items
        ],
        total_amount=invoice.total_amount,
        total_items=invoice.total_items,
    )


def render_invoice_document(
    session_factory: Callable[[], Session],
    renderer: DocumentRenderer,
    invoice_id: int,
) -> str:
    with session_factory() as db:
        document = build_invoice_document(db, invoice_id)
        path = renderer.render_invoice(document)
        invoice = db.get(Invoice, invoice_id)
        invoice.pdf_url = path
        db.commit()
    logger.info('Rendered document for invoice %s at %s', invoice_id, path)
    return path


def ensure_invoice_document(
    session_factory: Callable[[], Session],
    renderer: DocumentRenderer | None,
    invoice_id: int,
) -> str:
    """Returns the stored document path, rendering it first when it was never produced or has gone missing."""
    with session_factory() as db:
        invoice = db.get(Invoice, invoice_id)
        if not invoice:
            raise NotFoundError('Invoice not found', invoice_id=invoice_id)
        stored = invoice.pdf_url
    if renderer is None:
        raise NotFoundError('Invoice documents are not enabled', invoice_id=invoice_id)
    if stored and renderer.exists(stored):
        return stored
    return render_invoice_document(session_factory, renderer, invoice_id)
