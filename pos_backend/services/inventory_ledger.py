from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import case, func, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pos_backend.errors import InvalidRequestError, StockConflictError
from pos_backend.models import InventoryMovement, InventoryRecord, MovementRefType, MovementType

logger = logging.getLogger(__name__)

CATCH_UP_ATTEMPTS = 5


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass(frozen=True)
class LedgerCheck:
    store_id: int
    product_id: int
    qty_on_hand: int
    movement_balance: int

    @property
    def consistent(self) -> bool:
        return self.qty_on_hand == self.movement_balance


class InventoryLedger:
    """Per-(store, product) stock counter with its append-only movement log.

    Bound to the caller's session: nothing here commits. Every quantity change
    writes exactly one movement row in the same transaction.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def get_qty(self, store_id: int, product_id: int) -> int:
        qty = self.db.execute(
            select(InventoryRecord.qty_on_hand).where(
                InventoryRecord.store_id == store_id,
                InventoryRecord.product_id == product_id,
            )
        ).scalar_one_or_none()
        return qty or 0

    def try_decrement(
        self,
        store_id: int,
        product_id: int,
        qty: int,
        *,
        ref_type: MovementRefType,
        ref_id: str | None,
    ) -> bool:
        _require_positive(qty)
        result = self.db.execute(
            update(InventoryRecord)
            .where(
                InventoryRecord.store_id == store_id,
                InventoryRecord.product_id == product_id,
                InventoryRecord.qty_on_hand >= qty,
            )
            .values(qty_on_hand=InventoryRecord.qty_on_hand - qty, updated_at=_now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        self._append(store_id, product_id, MovementType.OUT, qty, ref_type, ref_id)
        return True

    def increment(
        self,
        store_id: int,
        product_id: int,
        qty: int,
        *,
        ref_type: MovementRefType,
        ref_id: str | None,
    ) -> None:
        _require_positive(qty)
        self.ensure_record(store_id, product_id)
        result = self.db.execute(
            update(InventoryRecord)
            .where(
                InventoryRecord.store_id == store_id,
                InventoryRecord.product_id == product_id,
            )
            .values(qty_on_hand=InventoryRecord.qty_on_hand + qty, updated_at=_now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise StockConflictError(
                'Inventory record disappeared during update. Please try again.',
                store_id=store_id,
                product_id=product_id,
            )
        self._append(store_id, product_id, MovementType.IN, qty, ref_type, ref_id)

    def ensure_at_least(
        self,
        store_id: int,
        product_id: int,
        floor: int,
        *,
        ref_type: MovementRefType,
        ref_id: str | None,
    ) -> int:
        """Raise stock to ``floor`` if it is below; returns the quantity added."""
        if floor < 0:
            raise InvalidRequestError('Stock floor cannot be negative', floor=floor)
        self.ensure_record(store_id, product_id)
        for _ in range(CATCH_UP_ATTEMPTS):
            current = self.get_qty(store_id, product_id)
            delta = floor - current
            if delta <= 0:
                return 0
            result = self.db.execute(
                update(InventoryRecord)
                .where(
                    InventoryRecord.store_id == store_id,
                    InventoryRecord.product_id == product_id,
                    InventoryRecord.qty_on_hand == current,
                )
                .values(qty_on_hand=floor, updated_at=_now())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                self._append(store_id, product_id, MovementType.IN, delta, ref_type, ref_id)
                return delta
            logger.info('Stock catch-up lost a race for store=%s product=%s, retrying', store_id, product_id)
        raise StockConflictError(
            'Stock kept changing while catching up. Please try again.',
            store_id=store_id,
            product_id=product_id,
        )

    def ensure_record(self, store_id: int, product_id: int) -> None:
        exists = self.db.execute(
            select(InventoryRecord.product_id).where(
                InventoryRecord.store_id == store_id,
                InventoryRecord.product_id == product_id,
            )
        ).scalar_one_or_none()
        if exists is not None:
            return
        try:
            self.db.execute(
                insert(InventoryRecord).values(
                    store_id=store_id,
                    product_id=product_id,
                    qty_on_hand=0,
                    updated_at=_now(),
                )
            )
        except IntegrityError as exc:
            raise StockConflictError(
                'Inventory record was created concurrently. Please try again.',
                store_id=store_id,
                product_id=product_id,
            ) from exc

    def movement_balance(self, store_id: int, product_id: int) -> int:
        signed = case(
            (InventoryMovement.type == MovementType.IN, InventoryMovement.qty),
            else_=-InventoryMovement.qty,
        )
        total = self.db.execute(
            select(func.coalesce(func.sum(signed), 0)).where(
                InventoryMovement.store_id == store_id,
                InventoryMovement.product_id == product_id,
            )
        ).scalar_one()
        return int(total)

    def check_consistency(self, store_id: int, product_id: int) -> LedgerCheck:
        return LedgerCheck(
            store_id=store_id,
            product_id=product_id,
            qty_on_hand=self.get_qty(store_id, product_id),
            movement_balance=self.movement_balance(store_id, product_id),
        )

    def _append(
        self,
        store_id: int,
        product_id: int,
        movement_type: MovementType,
        qty: int,
        ref_type: MovementRefType,
        ref_id: str | None,
    ) -> None:
        self.db.add(
            InventoryMovement(
                store_id=store_id,
                product_id=product_id,
                type=movement_type,
                qty=qty,
                ref_type=ref_type,
                ref_id=ref_id,
                created_at=_now(),
            )
        )


def _require_positive(qty: int) -> None:
    if isinstance(qty, bool) or not isinstance(qty, int) or qty <= 0:
        raise InvalidRequestError('Quantity must be a positive integer', qty=qty)
