from datetime import datetime

from beanie import Document, Indexed
from pydantic import Field


class ProcessedWebhookEvent(Document):
    """Dedup record per gateway event id; expired by a TTL index created at init."""
    event_id: Indexed(str, unique=True)
    event_type: str
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "processed_webhook_events"
