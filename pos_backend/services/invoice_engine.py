from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from pos_backend.errors import (
    InsufficientStockError,
    InvalidRequestError,
    NotFoundError,
    PosError,
    StockConflictError,
)
from pos_backend.models import (
    Invoice,
    InvoiceItem,
    InvoiceStatus,
    MovementRefType,
    Product,
    Store,
    User,
    UserRole,
)
from pos_backend.money import Money
from pos_backend.services.document_renderer import DocumentRenderer
from pos_backend.services.document_service import render_invoice_document
from pos_backend.services.event_notifier import EventNotifier, InventoryUpdated, InvoiceCreated
from pos_backend.services.inventory_ledger import InventoryLedger

logger = logging.getLogger(__name__)

SALES_ROLES = frozenset({UserRole.SALES, UserRole.ADMIN})


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass(frozen=True)
class InvoiceLine:
    product_id: int
    qty: int


@dataclass(frozen=True)
class CreatedInvoice:
    invoice_id: int
    store_id: int
    worker_id: int
    total_amount: Money
    total_items: int
    created_at: datetime
    pdf_url: str | None = None
    stock_levels: dict[int, int] = field(default_factory=dict)
    replayed: bool = False

    def totals(self) -> dict:
        return {'amount': str(self.total_amount), 'items': self.total_items}


def merge_lines(lines: Sequence[InvoiceLine]) -> dict[int, int]:
    """Validates the requested lines and folds repeated products into one quantity, keeping scan order."""
    if not lines:
        raise InvalidRequestError('Invoice must contain at least one line')
    merged: dict[int, int] = {}
    for line in lines:
        if isinstance(line.qty, bool) or not isinstance(line.qty, int) or line.qty <= 0:
            raise InvalidRequestError(
                f'Quantity must be a positive integer for product {line.product_id}',
                product_id=line.product_id,
                qty=line.qty,
            )
        merged[line.product_id] = merged.get(line.product_id, 0) + line.qty
    return merged


def require_store(db: Session, store_id: int) -> Store:
    store = db.get(Store, store_id)
    if not store or not store.active:
        raise NotFoundError('Store not found', store_id=store_id)
    return store


def require_sales_worker(db: Session, *, worker_id: int, store_id: int) -> User:
    worker = db.get(User, worker_id)
    if not worker or not worker.active:
        raise NotFoundError('Worker not found', worker_id=worker_id)
    if worker.role not in SALES_ROLES:
        raise InvalidRequestError('Worker does not have a sales role', worker_id=worker_id, role=worker.role.value)
    if worker.role == UserRole.SALES and worker.store_id != store_id:
        raise InvalidRequestError('Worker is not assigned to this store', worker_id=worker_id, store_id=store_id)
    return worker


def normalize_ref(client_invoice_ref: str | None) -> str | None:
    # blank refs mean "no ref"; stored as NULL so the unique key ignores them
    return (client_invoice_ref or '').strip() or None


def find_invoice_by_ref(db: Session, *, store_id: int, client_invoice_ref: str) -> Invoice | None:
    return db.execute(
        select(Invoice).where(
            Invoice.store_id == store_id,
            Invoice.client_invoice_ref == client_invoice_ref,
        )
    ).scalar_one_or_none()


def _replayed(invoice: Invoice) -> CreatedInvoice:
    return CreatedInvoice(
        invoice_id=invoice.id,
        store_id=invoice.store_id,
        worker_id=invoice.worker_id,
        total_amount=invoice.total_amount,
        total_items=invoice.total_items,
        created_at=invoice.created_at,
        pdf_url=invoice.pdf_url,
        replayed=True,
    )


def _resolve_products(db: Session, *, store_id: int, product_ids: list[int]) -> dict[int, Product]:
    products = db.execute(
        select(Product).where(Product.id.in_(product_ids), Product.store_id == store_id)
    ).scalars().all()
    by_id = {product.id: product for product in products}
    missing = [product_id for product_id in product_ids if product_id not in by_id]
    if missing:
        raise NotFoundError(
            'One or more products not found. Missing product IDs: ' + ', '.join(str(pid) for pid in missing),
            missing_product_ids=missing,
        )
    return by_id


class InvoiceEngine:
    """Turns a sale into a committed invoice while decrementing shared store stock.

    The engine owns its transaction in :meth:`create_invoice`. Callers that
    need the invoice inside a larger unit of work (offline sync) use
    :meth:`create_in_transaction` and run :meth:`after_commit` once their own
    commit succeeded.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        notifier: EventNotifier,
        renderer: DocumentRenderer | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.notifier = notifier
        self.renderer = renderer

    def create_invoice(
        self,
        store_id: int,
        worker_id: int,
        lines: Sequence[InvoiceLine],
        client_invoice_ref: str | None = None,
    ) -> CreatedInvoice:
        client_invoice_ref = normalize_ref(client_invoice_ref)
        with self.session_factory() as db:
            try:
                created = self.create_in_transaction(
                    db,
                    store_id=store_id,
                    worker_id=worker_id,
                    lines=lines,
                    client_invoice_ref=client_invoice_ref,
                )
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                existing = None
                if client_invoice_ref:
                    existing = find_invoice_by_ref(db, store_id=store_id, client_invoice_ref=client_invoice_ref)
                if existing is None:
                    raise StockConflictError('Invoice could not be stored due to a concurrent change. Please try again.') from exc
                logger.info('Invoice ref %s for store %s was committed concurrently; returning invoice %s', client_invoice_ref, store_id, existing.id)
                return _replayed(existing)
            except OperationalError as exc:
                db.rollback()
                raise StockConflictError('Stock changed concurrently. Please try again.') from exc
            except PosError as exc:
                logger.warning('Invoice rejected for store %s worker %s: %s', store_id, worker_id, exc.message)
                raise

        if created.replayed:
            return created
        logger.info(
            'Invoice %s committed for store %s: %s items, amount %s',
            created.invoice_id,
            created.store_id,
            created.total_items,
            created.total_amount,
        )
        return self.after_commit(created)

    def create_in_transaction(
        self,
        db: Session,
        *,
        store_id: int,
        worker_id: int,
        lines: Sequence[InvoiceLine],
        client_invoice_ref: str | None = None,
    ) -> CreatedInvoice:
        client_invoice_ref = normalize_ref(client_invoice_ref)
        quantities = merge_lines(lines)
        require_store(db, store_id)
        require_sales_worker(db, worker_id=worker_id, store_id=store_id)

        if client_invoice_ref:
            existing = find_invoice_by_ref(db, store_id=store_id, client_invoice_ref=client_invoice_ref)
            if existing is not None:
                logger.info('Invoice ref %s already stored as invoice %s; replaying', client_invoice_ref, existing.id)
                return _replayed(existing)

        products = _resolve_products(db, store_id=store_id, product_ids=list(quantities))

        items: list[InvoiceItem] = []
        total_amount = Money.zero()
        total_items = 0
        for product_id, qty in quantities.items():
            unit_price = products[product_id].unit_price
            line_total = unit_price * qty
            total_amount += line_total
            total_items += qty
            items.append(
                InvoiceItem(
                    product_id=product_id,
                    qty=qty,
                    unit_price=unit_price,
                    line_total=line_total,
                )
            )

        invoice = Invoice(
            store_id=store_id,
            worker_id=worker_id,
            total_amount=total_amount,
            total_items=total_items,
            status=InvoiceStatus.COMPLETED,
            client_invoice_ref=client_invoice_ref,
            created_at=_now(),
            items=items,
        )
        db.add(invoice)
        db.flush()

        ledger = InventoryLedger(db)
        stock_levels: dict[int, int] = {}
        for product_id, qty in quantities.items():
            if not ledger.try_decrement(
                store_id,
                product_id,
                qty,
                ref_type=MovementRefType.INVOICE,
                ref_id=str(invoice.id),
            ):
                available = ledger.get_qty(store_id, product_id)
                if available >= qty:
                    raise StockConflictError(
                        'Stock changed for product. Please try again.',
                        sku=products[product_id].sku,
                    )
                raise InsufficientStockError(sku=products[product_id].sku, available=available, requested=qty)
            stock_levels[product_id] = ledger.get_qty(store_id, product_id)
        db.flush()

        return CreatedInvoice(
            invoice_id=invoice.id,
            store_id=store_id,
            worker_id=worker_id,
            total_amount=total_amount,
            total_items=total_items,
            created_at=invoice.created_at,
            stock_levels=stock_levels,
        )

    def after_commit(self, created: CreatedInvoice) -> CreatedInvoice:
        """Publishes the committed sale and renders its document; neither can undo the sale."""
        self._publish(created)
        if self.renderer is None:
            return created
        try:
            pdf_url = render_invoice_document(self.session_factory, self.renderer, created.invoice_id)
        except Exception:
            logger.exception('Document rendering failed for invoice %s; it will be rendered on request', created.invoice_id)
            return created
        return replace(created, pdf_url=pdf_url)

    def _publish(self, created: CreatedInvoice) -> None:
        facts = [
            (
                self.notifier.invoice_created,
                InvoiceCreated(
                    invoice_id=created.invoice_id,
                    store_id=created.store_id,
                    total_amount=str(created.total_amount),
                    created_at=created.created_at,
                ),
            )
        ]
        facts.extend(
            (
                self.notifier.inventory_updated,
                InventoryUpdated(store_id=created.store_id, product_id=product_id, new_qty=new_qty),
            )
            for product_id, new_qty in created.stock_levels.items()
        )
        publish_facts(facts, invoice_id=created.invoice_id)


def publish_facts(facts, *, invoice_id: int) -> None:
    """Sends each fact on its own; a failed delivery is logged and the rest still go out."""
    for send, fact in facts:
        try:
            send(fact)
        except Exception:
            logger.exception('Event notification %s failed for invoice %s', type(fact).__name__, invoice_id)
