"""Dead-lettered worker jobs, kept until someone resolves them by hand."""

from datetime import datetime
from typing import Any

from beanie import Document
from pydantic import Field


class DeadLetterJob(Document):
    job_name: str
    job_id: str
    order_id: str | None = None
    args: list[Any] = Field(default_factory=list)
    kwargs: dict[str, Any] = Field(default_factory=dict)
    reason: str = ""
    attempts: int = 0
    resolved: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "dead_letter_jobs"
        indexes = [
            [("resolved", 1), ("created_at", -1)],
            [("order_id", 1)],
        ]
