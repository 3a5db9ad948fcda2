from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from pos_backend.errors import InsufficientStockError, InvalidRequestError, NotFoundError
from pos_backend.models import InventoryMovement, InventoryRecord, MovementRefType, Product, Store
from pos_backend.services.audit_service import log_audit
from pos_backend.services.inventory_ledger import InventoryLedger, LedgerCheck

logger = logging.getLogger(__name__)


def list_inventory(db: Session, *, store_id: int | None = None) -> list[dict]:
    query = (
        select(InventoryRecord, Product)
        .join(Product, Product.id == InventoryRecord.product_id)
        .order_by(InventoryRecord.store_id.asc(), InventoryRecord.updated_at.desc())
    )
    if store_id is not None:
        query = query.where(InventoryRecord.store_id == store_id)
    return [
        {
            'store_id': record.store_id,
            'product_id': record.product_id,
            'sku': product.sku,
            'name': product.name,
            'qty_on_hand': record.qty_on_hand,
            'updated_at': record.updated_at,
        }
        for record, product in db.execute(query).all()
    ]


def list_movements(
    db: Session,
    *,
    store_id: int | None = None,
    product_id: int | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    limit: int = 500,
) -> list[dict]:
    query = select(InventoryMovement)
    if store_id is not None:
        query = query.where(InventoryMovement.store_id == store_id)
    if product_id is not None:
        query = query.where(InventoryMovement.product_id == product_id)
    if date_from is not None:
        query = query.where(InventoryMovement.created_at >= date_from)
    if date_to is not None:
        query = query.where(InventoryMovement.created_at <= date_to)
    rows = db.execute(
        query.order_by(InventoryMovement.created_at.desc(), InventoryMovement.id.desc()).limit(limit)
    ).scalars().all()
    return [
        {
            'id': row.id,
            'store_id': row.store_id,
            'product_id': row.product_id,
            'type': row.type.value,
            'qty': row.qty,
            'ref_type': row.ref_type.value,
            'ref_id': row.ref_id,
            'created_at': row.created_at,
        }
        for row in rows
    ]


def _require_store_product(db: Session, *, store_id: int, product_id: int) -> Product:
    store = db.get(Store, store_id)
    if not store or not store.active:
        raise NotFoundError('Store not found', store_id=store_id)
    product = db.get(Product, product_id)
    if not product or product.store_id != store_id:
        raise NotFoundError('Product not found in this store', product_id=product_id, store_id=store_id)
    return product


def adjust_stock(
    db: Session,
    *,
    store_id: int,
    product_id: int,
    quantity: int,
    actor_user_id: int | None,
    reference: str | None = None,
) -> dict:
    """Restock (positive) or write off (negative) stock, recording the movement and an audit row."""
    if quantity == 0:
        raise InvalidRequestError('Quantity must not be zero')
    product = _require_store_product(db, store_id=store_id, product_id=product_id)
    ledger = InventoryLedger(db)
    previous = ledger.get_qty(store_id, product_id)
    if quantity > 0:
        ledger.increment(store_id, product_id, quantity, ref_type=MovementRefType.PURCHASE, ref_id=reference)
    elif not ledger.try_decrement(store_id, product_id, -quantity, ref_type=MovementRefType.ADJUSTMENT, ref_id=reference):
        raise InsufficientStockError(sku=product.sku, available=ledger.get_qty(store_id, product_id), requested=-quantity)
    new_qty = ledger.get_qty(store_id, product_id)
    log_audit(
        db,
        actor_user_id=actor_user_id,
        action='STOCK_ADJUSTED',
        metadata={
            'store_id': store_id,
            'product_id': product_id,
            'sku': product.sku,
            'quantity': quantity,
            'previous_qty': previous,
            'new_qty': new_qty,
            'reference': reference,
        },
    )
    logger.info('Stock for %s in store %s adjusted by %s to %s', product.sku, store_id, quantity, new_qty)
    return {
        'store_id': store_id,
        'product_id': product_id,
        'previous_qty': previous,
        'added': quantity,
        'new_qty': new_qty,
    }


def ledger_check(db: Session, *, store_id: int, product_id: int) -> LedgerCheck:
    _require_store_product(db, store_id=store_id, product_id=product_id)
    return InventoryLedger(db).check_consistency(store_id, product_id)
