from __future__ import annotations

from sqlalchemy.orm import Session

from pos_backend.models import AuditLog


def log_audit(
    db: Session,
    *,
    actor_user_id: int | None,
    action: str,
    invoice_id: int | None = None,
    metadata: dict | None = None,
) -> None:
    db.add(
        AuditLog(
            actor_user_id=actor_user_id,
            action=action,
            invoice_id=invoice_id,
            meta=metadata or {},
        )
    )
