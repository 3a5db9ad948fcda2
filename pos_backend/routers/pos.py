from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Header, HTTPException, Response
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from pos_backend.auth import Principal, Role, require_role, resolve_store_id, scoped_store_filter
from pos_backend.config import settings
from pos_backend.db import get_db
from pos_backend.dependencies import (
    get_document_renderer,
    get_invoice_engine,
    get_session_factory,
    get_sync_reconciler,
    get_void_engine,
)
from pos_backend.errors import PosError
from pos_backend.schemas import InvoiceCreate, InvoiceVoid, ScanRequest, SyncBatch
from pos_backend.services.document_renderer import DocumentRenderer
from pos_backend.services.document_service import ensure_invoice_document
from pos_backend.services.invoice_engine import InvoiceEngine, InvoiceLine
from pos_backend.services.offline_sync_service import OfflineInvoice, OfflineLine, OfflineSyncReconciler
from pos_backend.services.sales_query_service import get_invoice_detail, list_invoices, scan_product, today_stats
from pos_backend.services.void_engine import VoidEngine

router = APIRouter(prefix='/pos', tags=['pos'])

SALES_OR_ADMIN = (Role.SALES, Role.ADMIN)
ANY_ROLE = (Role.SALES, Role.ADMIN, Role.INVENTORY)


def _http_error(exc: PosError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.detail())


def _scoped_invoice(db: Session, principal: Principal, invoice_id: int) -> dict:
    try:
        invoice = get_invoice_detail(db, invoice_id=invoice_id)
    except PosError as exc:
        raise _http_error(exc) from exc
    if principal.role == Role.SALES and invoice['store_id'] != principal.store_id:
        raise HTTPException(status_code=404, detail='Invoice not found')
    return invoice


@router.post('/scan')
def scan(
    payload: ScanRequest,
    principal: Principal = Depends(require_role(*SALES_OR_ADMIN)),
    db: Session = Depends(get_db),
):
    store_id = resolve_store_id(principal, payload.store_id)
    try:
        return scan_product(db, store_id=store_id, sku=payload.sku)
    except PosError as exc:
        raise _http_error(exc) from exc


@router.post('/invoices', status_code=201)
def create_invoice(
    payload: InvoiceCreate,
    response: Response,
    idempotency_key: str | None = Header(default=None, alias='Idempotency-Key'),
    principal: Principal = Depends(require_role(*SALES_OR_ADMIN)),
    engine: InvoiceEngine = Depends(get_invoice_engine),
):
    store_id = resolve_store_id(principal, payload.store_id)
    client_invoice_ref = (payload.client_invoice_ref or idempotency_key or '').strip() or None
    try:
        created = engine.create_invoice(
            store_id,
            principal.id,
            [InvoiceLine(product_id=line.product_id, qty=line.qty) for line in payload.lines],
            client_invoice_ref=client_invoice_ref,
        )
    except PosError as exc:
        raise _http_error(exc) from exc

    if created.replayed:
        response.status_code = 200
    return {
        'invoice_id': created.invoice_id,
        'store_id': created.store_id,
        'worker_id': created.worker_id,
        'totals': created.totals(),
        'pdf_url': created.pdf_url,
        'created_at': created.created_at,
        'replayed': created.replayed,
    }


@router.get('/invoices')
def invoices(
    store_id: int | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    principal: Principal = Depends(require_role(*ANY_ROLE)),
    db: Session = Depends(get_db),
):
    if date_from and date_to and date_from > date_to:
        raise HTTPException(status_code=400, detail='date_from must not be after date_to')
    return list_invoices(
        db,
        store_id=scoped_store_filter(principal, store_id),
        date_from=date_from,
        date_to=date_to,
    )


@router.get('/invoices/{invoice_id}')
def invoice_detail(
    invoice_id: int,
    principal: Principal = Depends(require_role(*ANY_ROLE)),
    db: Session = Depends(get_db),
):
    return _scoped_invoice(db, principal, invoice_id)


def _void(engine: VoidEngine, principal: Principal, invoice_id: int, reason: str | None) -> dict:
    try:
        voided = engine.void_invoice(invoice_id, actor_user_id=principal.id, reason=reason)
    except PosError as exc:
        raise _http_error(exc) from exc
    return {
        'invoice_id': voided.invoice_id,
        'store_id': voided.store_id,
        'status': 'VOID',
        'voided_at': voided.voided_at,
        'restored_items': voided.restored_items,
        'stock_levels': voided.stock_levels,
    }


@router.post('/invoices/{invoice_id}/void')
def void_invoice(
    invoice_id: int,
    payload: InvoiceVoid | None = None,
    principal: Principal = Depends(require_role(Role.ADMIN)),
    engine: VoidEngine = Depends(get_void_engine),
):
    return _void(engine, principal, invoice_id, payload.reason if payload else None)


@router.delete('/invoices/{invoice_id}')
def delete_invoice(
    invoice_id: int,
    principal: Principal = Depends(require_role(Role.ADMIN)),
    engine: VoidEngine = Depends(get_void_engine),
):
    return _void(engine, principal, invoice_id, 'Deleted by administrator')


@router.get('/invoices/{invoice_id}/document')
def invoice_document(
    invoice_id: int,
    principal: Principal = Depends(require_role(*ANY_ROLE)),
    db: Session = Depends(get_db),
    session_factory=Depends(get_session_factory),
    renderer: DocumentRenderer | None = Depends(get_document_renderer),
):
    _scoped_invoice(db, principal, invoice_id)
    try:
        path = ensure_invoice_document(session_factory, renderer, invoice_id)
    except PosError as exc:
        raise _http_error(exc) from exc
    return FileResponse(
        renderer.resolve(path),
        media_type=getattr(renderer, 'media_type', None),
        filename=f'invoice-{invoice_id}.html',
    )


@router.post('/invoices/sync')
def sync_invoices(
    payload: SyncBatch,
    principal: Principal = Depends(require_role(*SALES_OR_ADMIN)),
    reconciler: OfflineSyncReconciler = Depends(get_sync_reconciler),
):
    store_id = resolve_store_id(principal, payload.store_id)
    batch = [
        OfflineInvoice(
            local_id=item.local_id,
            lines=[OfflineLine(**line.model_dump()) for line in item.lines],
            client_invoice_ref=item.client_invoice_ref,
            payment_method=item.payment_method,
            created_at=item.created_at,
        )
        for item in payload.invoices
    ]
    try:
        report = reconciler.sync(batch, store_id=store_id, worker_id=principal.id)
    except PosError as exc:
        raise _http_error(exc) from exc
    return {
        'synced': [
            {'local_id': item.local_id, 'server_invoice_id': item.server_invoice_id, 'replayed': item.replayed}
            for item in report.synced
        ],
        'failed': [
            {'local_id': item.local_id, 'reason': item.reason, 'code': item.code}
            for item in report.failed
        ],
    }


@router.get('/stats/today')
def stats_today(
    store_id: int | None = None,
    principal: Principal = Depends(require_role(*SALES_OR_ADMIN)),
    db: Session = Depends(get_db),
):
    return today_stats(
        db,
        store_id=resolve_store_id(principal, store_id),
        worker_id=principal.id,
        tz_name=settings.store_timezone,
    )
