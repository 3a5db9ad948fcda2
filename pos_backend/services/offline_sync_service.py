from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pos_backend.errors import InvalidRequestError, PosError
from pos_backend.models import Brand, Category, Manufacturer, MovementRefType, Product, User
from pos_backend.money import Money
from pos_backend.services.audit_service import log_audit
from pos_backend.services.inventory_ledger import InventoryLedger
from pos_backend.services.invoice_engine import CreatedInvoice, InvoiceEngine, InvoiceLine, find_invoice_by_ref

logger = logging.getLogger(__name__)

WS_RE = re.compile(r'\s+')


@dataclass(frozen=True)
class OfflineLine:
    qty: int
    stock_quantity: int
    sku: str | None = None
    product_name: str | None = None
    category_name: str | None = None
    brand_name: str | None = None
    manufacturer_name: str | None = None
    unit_price: Decimal | str | None = None


@dataclass(frozen=True)
class OfflineInvoice:
    local_id: str
    lines: Sequence[OfflineLine]
    client_invoice_ref: str | None = None
    payment_method: str | None = None
    created_at: datetime | None = None

    @property
    def correlation_ref(self) -> str:
        return (self.client_invoice_ref or '').strip() or self.local_id.strip()


@dataclass(frozen=True)
class SyncedItem:
    local_id: str
    server_invoice_id: int
    replayed: bool = False


@dataclass(frozen=True)
class FailedItem:
    local_id: str
    reason: str
    code: str


@dataclass
class SyncReport:
    synced: list[SyncedItem] = field(default_factory=list)
    failed: list[FailedItem] = field(default_factory=list)

    def record(self, outcome: SyncedItem | FailedItem) -> None:
        if isinstance(outcome, SyncedItem):
            self.synced.append(outcome)
        else:
            self.failed.append(outcome)


def clean_name(value: str | None) -> str:
    return WS_RE.sub(' ', (value or '').strip())


def _slugify(name: str) -> str:
    value = re.sub(r'[^a-z0-9]+', '-', name.lower()).strip('-')
    return value or 'item'


def validate_offline_invoice(item: OfflineInvoice) -> None:
    if not item.local_id or not item.local_id.strip():
        raise InvalidRequestError('Offline invoice is missing its local id')
    if not item.lines:
        raise InvalidRequestError('Offline invoice has no lines')
    for idx, line in enumerate(item.lines, start=1):
        if isinstance(line.qty, bool) or not isinstance(line.qty, int) or line.qty <= 0:
            raise InvalidRequestError(f'Line {idx}: quantity must be a positive integer', line=idx, qty=line.qty)
        if isinstance(line.stock_quantity, bool) or not isinstance(line.stock_quantity, int) or line.stock_quantity < 0:
            raise InvalidRequestError(
                f'Line {idx}: stock quantity must be a non-negative integer',
                line=idx,
                stock_quantity=line.stock_quantity,
            )
        if not clean_name(line.sku) and not clean_name(line.product_name):
            raise InvalidRequestError(f'Line {idx}: a SKU or a product name is required', line=idx)


def _get_or_create_manufacturer(db: Session, name: str) -> Manufacturer:
    manufacturer = db.execute(
        select(Manufacturer).where(func.lower(Manufacturer.name) == name.lower())
    ).scalars().first()
    if manufacturer:
        return manufacturer
    manufacturer = Manufacturer(name=name)
    db.add(manufacturer)
    db.flush()
    return manufacturer


def _get_or_create_brand(db: Session, name: str, *, manufacturer_id: int) -> Brand:
    brand = db.execute(
        select(Brand).where(func.lower(Brand.name) == name.lower(), Brand.manufacturer_id == manufacturer_id)
    ).scalars().first()
    if brand:
        return brand
    brand = Brand(name=name, manufacturer_id=manufacturer_id)
    db.add(brand)
    db.flush()
    return brand


def _get_or_create_category(db: Session, name: str) -> Category:
    category = db.execute(select(Category).where(func.lower(Category.name) == name.lower())).scalars().first()
    if category:
        return category
    category = Category(name=name)
    db.add(category)
    db.flush()
    return category


def _generated_sku(db: Session, *, store_id: int, name: str) -> str:
    base = 'OFF-' + _slugify(name).upper()
    taken = set(
        db.execute(
            select(Product.sku).where(Product.store_id == store_id, Product.sku.like(f'{base}%'))
        ).scalars().all()
    )
    candidate = base
    suffix = 2
    while candidate in taken:
        candidate = f'{base}-{suffix}'
        suffix += 1
    return candidate


def resolve_offline_product(db: Session, *, store_id: int, line: OfflineLine) -> Product:
    """Finds the product a client line refers to, creating it and its catalog entries by name when unknown."""
    sku = clean_name(line.sku)
    name = clean_name(line.product_name)
    if sku:
        product = db.execute(
            select(Product).where(Product.store_id == store_id, Product.sku == sku)
        ).scalar_one_or_none()
        if product:
            return product
    elif name:
        product = db.execute(
            select(Product)
            .where(Product.store_id == store_id, func.lower(Product.name) == name.lower())
            .order_by(Product.id.asc())
        ).scalars().first()
        if product:
            return product

    category_name = clean_name(line.category_name)
    brand_name = clean_name(line.brand_name)
    manufacturer_name = clean_name(line.manufacturer_name)
    label = sku or name
    if not (category_name and brand_name and manufacturer_name):
        raise InvalidRequestError(
            f'Product {label} is unknown and needs category, brand and manufacturer names to be created',
            sku=sku or None,
            product_name=name or None,
        )
    if line.unit_price is None:
        raise InvalidRequestError(f'Product {label} is unknown and needs a unit price to be created')
    try:
        unit_price = Money.of(line.unit_price)
    except (TypeError, ValueError) as exc:
        raise InvalidRequestError(f'Invalid unit price for product {label}', unit_price=str(line.unit_price)) from exc
    if unit_price.is_negative():
        raise InvalidRequestError(f'Unit price cannot be negative for product {label}')

    manufacturer = _get_or_create_manufacturer(db, manufacturer_name)
    brand = _get_or_create_brand(db, brand_name, manufacturer_id=manufacturer.id)
    category = _get_or_create_category(db, category_name)
    product = Product(
        sku=sku or _generated_sku(db, store_id=store_id, name=name),
        name=name or sku,
        store_id=store_id,
        category_id=category.id,
        brand_id=brand.id,
        manufacturer_id=manufacturer.id,
        unit_price=unit_price,
    )
    db.add(product)
    db.flush()
    logger.info('Created product %s (%s) in store %s from offline sync', product.id, product.sku, store_id)
    return product


class OfflineSyncReconciler:
    """Replays invoices recorded on disconnected terminals, one transaction per invoice.

    The client's asserted stock is trusted: server stock is raised to at least
    that level before the sale is replayed, so an offline device never has its
    sale rejected for stock the server simply had not heard about yet.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        engine: InvoiceEngine,
        max_batch_size: int = 200,
    ) -> None:
        self.session_factory = session_factory
        self.engine = engine
        self.max_batch_size = max_batch_size

    def sync(self, batch: Sequence[OfflineInvoice], *, store_id: int, worker_id: int) -> SyncReport:
        if len(batch) > self.max_batch_size:
            raise InvalidRequestError(
                f'Sync batch is limited to {self.max_batch_size} invoices',
                batch_size=len(batch),
            )
        report = SyncReport()
        for item in batch:
            report.record(self._sync_one(item, store_id=store_id, worker_id=worker_id))

        logger.info(
            'Offline sync for store %s worker %s: %s synced, %s failed',
            store_id,
            worker_id,
            len(report.synced),
            len(report.failed),
        )
        # Items are already committed; the report must reach the till even if the audit row does not.
        try:
            self._audit(batch, report, store_id=store_id, worker_id=worker_id)
        except SQLAlchemyError:
            logger.exception('Audit for offline sync batch from store %s worker %s could not be written', store_id, worker_id)
        return report

    def _sync_one(self, item: OfflineInvoice, *, store_id: int, worker_id: int) -> SyncedItem | FailedItem:
        local_id = item.local_id
        try:
            validate_offline_invoice(item)
            with self.session_factory() as db:
                created = self._replay(db, item, store_id=store_id, worker_id=worker_id)
                db.commit()
        except PosError as exc:
            logger.warning('Offline invoice %s failed to sync: %s', local_id, exc.message)
            return FailedItem(local_id=local_id, reason=exc.message, code=exc.code)
        except SQLAlchemyError as exc:
            logger.warning('Offline invoice %s hit a database error: %s', local_id, exc)
            return FailedItem(
                local_id=local_id,
                reason='Invoice could not be stored due to a concurrent change. Please retry.',
                code='CONFLICT',
            )

        if not created.replayed:
            created = self.engine.after_commit(created)
        return SyncedItem(local_id=local_id, server_invoice_id=created.invoice_id, replayed=created.replayed)

    def _replay(self, db: Session, item: OfflineInvoice, *, store_id: int, worker_id: int) -> CreatedInvoice:
        ref = item.correlation_ref
        existing = find_invoice_by_ref(db, store_id=store_id, client_invoice_ref=ref)
        if existing is not None:
            logger.info('Offline invoice %s already synced as invoice %s', item.local_id, existing.id)
            return CreatedInvoice(
                invoice_id=existing.id,
                store_id=existing.store_id,
                worker_id=existing.worker_id,
                total_amount=existing.total_amount,
                total_items=existing.total_items,
                created_at=existing.created_at,
                pdf_url=existing.pdf_url,
                replayed=True,
            )

        lines: list[InvoiceLine] = []
        floors: dict[int, int] = {}
        for line in item.lines:
            product = resolve_offline_product(db, store_id=store_id, line=line)
            floors[product.id] = max(floors.get(product.id, 0), line.stock_quantity)
            lines.append(InvoiceLine(product_id=product.id, qty=line.qty))

        ledger = InventoryLedger(db)
        for product_id, floor in floors.items():
            added = ledger.ensure_at_least(
                store_id,
                product_id,
                floor,
                ref_type=MovementRefType.SYNC_CATCH_UP,
                ref_id=item.local_id,
            )
            if added:
                logger.info('Caught up store %s product %s by %s for offline invoice %s', store_id, product_id, added, item.local_id)

        return self.engine.create_in_transaction(
            db,
            store_id=store_id,
            worker_id=worker_id,
            lines=lines,
            client_invoice_ref=ref,
        )

    def _audit(self, batch: Sequence[OfflineInvoice], report: SyncReport, *, store_id: int, worker_id: int) -> None:
        by_local_id = {item.local_id: item for item in batch}
        with self.session_factory() as db:
            actor = db.get(User, worker_id)
            log_audit(
                db,
                actor_user_id=actor.id if actor else None,
                action='OFFLINE_SYNC_BATCH',
                metadata={
                    'store_id': store_id,
                    'worker_id': worker_id,
                    'synced': [
                        {
                            'local_id': outcome.local_id,
                            'invoice_id': outcome.server_invoice_id,
                            'replayed': outcome.replayed,
                            'client_created_at': _iso(by_local_id.get(outcome.local_id)),
                            'payment_method': getattr(by_local_id.get(outcome.local_id), 'payment_method', None),
                        }
                        for outcome in report.synced
                    ],
                    'failed': [
                        {'local_id': outcome.local_id, 'code': outcome.code, 'reason': outcome.reason}
                        for outcome in report.failed
                    ],
                },
            )
            db.commit()


def _iso(item: OfflineInvoice | None) -> str | None:
    if item is None or item.created_at is None:
        return None
    return item.created_at.isoformat()
