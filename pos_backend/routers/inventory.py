from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from pos_backend.auth import Principal, Role, require_role
from pos_backend.db import get_db
from pos_backend.errors import PosError
from pos_backend.schemas import StockAdjust
from pos_backend.services.inventory_service import adjust_stock, ledger_check, list_inventory, list_movements

router = APIRouter(prefix='/inventory', tags=['inventory'])

STOCK_ROLES = (Role.ADMIN, Role.INVENTORY)


@router.get('')
def inventory(
    store_id: int | None = None,
    principal: Principal = Depends(require_role(*STOCK_ROLES)),
    db: Session = Depends(get_db),
):
    return list_inventory(db, store_id=store_id)


@router.get('/movements')
def movements(
    store_id: int | None = None,
    product_id: int | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    principal: Principal = Depends(require_role(*STOCK_ROLES)),
    db: Session = Depends(get_db),
):
    if date_from and date_to and date_from > date_to:
        raise HTTPException(status_code=400, detail='date_from must not be after date_to')
    return list_movements(db, store_id=store_id, product_id=product_id, date_from=date_from, date_to=date_to)


@router.post('/stock')
def add_stock(
    payload: StockAdjust,
    principal: Principal = Depends(require_role(*STOCK_ROLES)),
    db: Session = Depends(get_db),
):
    try:
        result = adjust_stock(
            db,
            store_id=payload.store_id,
            product_id=payload.product_id,
            quantity=payload.quantity,
            actor_user_id=principal.id,
            reference=payload.reference,
        )
    except PosError as exc:
        db.rollback()
        raise HTTPException(status_code=exc.status_code, detail=exc.detail()) from exc
    db.commit()
    return result


@router.get('/{store_id}/{product_id}/ledger-check')
def check_ledger(
    store_id: int,
    product_id: int,
    principal: Principal = Depends(require_role(*STOCK_ROLES)),
    db: Session = Depends(get_db),
):
    try:
        check = ledger_check(db, store_id=store_id, product_id=product_id)
    except PosError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.detail()) from exc
    return {
        'store_id': check.store_id,
        'product_id': check.product_id,
        'qty_on_hand': check.qty_on_hand,
        'movement_balance': check.movement_balance,
        'consistent': check.consistent,
    }
