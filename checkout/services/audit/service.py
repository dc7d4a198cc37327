import logging
from typing import Any

from sqlalchemy.orm import Session

from checkout.models.audit_log import AuditLog

logger = logging.getLogger(__name__)


class AuditService:
    def __init__(self, db: Session) -> None:
        self.db = db

    def log(
        self,
        actor_type: str,
        actor_id: str | None,
        action: str,
        entity_type: str,
        entity_id: str | None,
        payload: dict[str, Any] | None = None,
    ) -> AuditLog:
        entry = AuditLog(
            actor_type=actor_type,
            actor_id=actor_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            payload=payload or {},
        )
        self.db.add(entry)
        self.db.commit()
        self.db.refresh(entry)
        return entry

    def record_security_event(
        self,
        action: str,
        actor_type: str,
        actor_id: str | None,
        order_id: str | None,
        payload: dict[str, Any] | None = None,
    ) -> None:
        """Durable trail for invalid signatures and ledger conflicts; never masks the original error."""
        try:
            self.log(actor_type, actor_id, action, "purchase", order_id, payload)
        except Exception:
            self.db.rollback()
            logger.exception("audit_log_write_error", extra={"order_id": order_id, "event": action})
