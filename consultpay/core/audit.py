"""Audit log for payment transitions, verification attempts and anomalies."""

from typing import Any

from consultpay.core.logging import current_request_id, get_logger
from consultpay.schemas.payments import AuditEntry
from consultpay.store.base import PaymentStore

log = get_logger(__name__)


async def log_event(
    store: PaymentStore,
    event_type: str,
    entity_type: str,
    entity_id: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> None:
    """Append to the audit trail. Never fails the caller's operation."""
    try:
        await store.record_audit(
            AuditEntry(
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                request_id=current_request_id(),
                metadata=metadata or {},
            )
        )
    except Exception:
        log.exception("audit_write_failed", event_type=event_type, entity_id=entity_id)
