from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, selectinload

from pos_backend.errors import InvalidRequestError, NotFoundError, StockConflictError
from pos_backend.models import Invoice, InvoiceStatus, MovementRefType
from pos_backend.services.audit_service import log_audit
from pos_backend.services.event_notifier import EventNotifier, InventoryUpdated, InvoiceVoided
from pos_backend.services.inventory_ledger import InventoryLedger
from pos_backend.services.invoice_engine import publish_facts

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass(frozen=True)
class VoidedInvoice:
    invoice_id: int
    store_id: int
    voided_at: datetime
    restored_items: int
    stock_levels: dict[int, int] = field(default_factory=dict)


class VoidEngine:
    """Reverses a completed invoice: stock goes back, compensating IN movements are appended and the invoice is kept as VOID."""

    def __init__(self, session_factory: Callable[[], Session], *, notifier: EventNotifier) -> None:
        self.session_factory = session_factory
        self.notifier = notifier

    def void_invoice(
        self,
        invoice_id: int,
        *,
        actor_user_id: int | None = None,
        reason: str | None = None,
        store_id: int | None = None,
    ) -> VoidedInvoice:
        with self.session_factory() as db:
            try:
                voided = self._void(db, invoice_id, actor_user_id=actor_user_id, reason=reason, store_id=store_id)
                db.commit()
            except OperationalError as exc:
                db.rollback()
                raise StockConflictError('Stock changed concurrently while voiding. Please try again.') from exc

        logger.info('Invoice %s voided, %s units restored to store %s', invoice_id, voided.restored_items, voided.store_id)
        self._publish(voided)
        return voided

    def _void(
        self,
        db: Session,
        invoice_id: int,
        *,
        actor_user_id: int | None,
        reason: str | None,
        store_id: int | None,
    ) -> VoidedInvoice:
        invoice = db.execute(
            select(Invoice).options(selectinload(Invoice.items)).where(Invoice.id == invoice_id)
        ).scalar_one_or_none()
        if not invoice or (store_id is not None and invoice.store_id != store_id):
            raise NotFoundError('Invoice not found', invoice_id=invoice_id)
        if invoice.status == InvoiceStatus.VOID:
            raise InvalidRequestError('Invoice is already void', invoice_id=invoice_id)

        voided_at = _now()
        transitioned = db.execute(
            update(Invoice)
            .where(Invoice.id == invoice.id, Invoice.status == InvoiceStatus.COMPLETED)
            .values(
                status=InvoiceStatus.VOID,
                voided_at=voided_at,
                voided_by_user_id=actor_user_id,
                void_reason=reason,
            )
            .execution_options(synchronize_session=False)
        )
        if transitioned.rowcount != 1:
            raise InvalidRequestError('Invoice is already void', invoice_id=invoice_id)

        ledger = InventoryLedger(db)
        stock_levels: dict[int, int] = {}
        restored = 0
        for item in invoice.items:
            ledger.increment(
                invoice.store_id,
                item.product_id,
                item.qty,
                ref_type=MovementRefType.INVOICE_VOID,
                ref_id=str(invoice.id),
            )
            restored += item.qty
            stock_levels[item.product_id] = ledger.get_qty(invoice.store_id, item.product_id)

        log_audit(
            db,
            actor_user_id=actor_user_id,
            action='INVOICE_VOIDED',
            invoice_id=invoice.id,
            metadata={
                'store_id': invoice.store_id,
                'total_amount': str(invoice.total_amount),
                'restored_items': restored,
                'reason': reason,
            },
        )
        db.flush()
        return VoidedInvoice(
            invoice_id=invoice.id,
            store_id=invoice.store_id,
            voided_at=voided_at,
            restored_items=restored,
            stock_levels=stock_levels,
        )

    def _publish(self, voided: VoidedInvoice) -> None:
        facts = [
            (
                self.notifier.invoice_voided,
                InvoiceVoided(invoice_id=voided.invoice_id, store_id=voided.store_id, voided_at=voided.voided_at),
            )
        ]
        facts.extend(
            (
                self.notifier.inventory_updated,
                InventoryUpdated(store_id=voided.store_id, product_id=product_id, new_qty=new_qty),
            )
            for product_id, new_qty in voided.stock_levels.items()
        )
        publish_facts(facts, invoice_id=voided.invoice_id)
