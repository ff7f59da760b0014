"""Append-only payment audit trail: transitions, verification attempts, anomalies."""

from datetime import datetime
from typing import Any

from beanie import Document
from pydantic import Field


class PaymentAuditLog(Document):
    event_type: str
    entity_type: str
    entity_id: str | None = None
    request_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "payment_audit_log"
        indexes = [
            [("entity_id", 1), ("created_at", 1)],
            [("event_type", 1), ("created_at", -1)],
        ]
