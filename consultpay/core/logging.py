import logging
import sys
from typing import Any

import structlog

# never written to logs, even when passed as context
REDACTED_KEYS = frozenset({"signature", "razorpay_signature", "x_razorpay_signature", "key_secret", "webhook_secret"})


def redact_secrets(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    for key in REDACTED_KEYS.intersection(event_dict):
        event_dict[key] = "[redacted]"
    return event_dict


def configure_logging(debug: bool = False) -> None:
    log_level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            redact_secrets,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer() if debug else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    return structlog.get_logger(name)


def bind_request_id(request_id: str) -> None:
    structlog.contextvars.bind_contextvars(request_id=request_id)


def bind_webhook_event(event_id: str, event_type: str) -> None:
    """Tag every log line of one webhook delivery."""
    structlog.contextvars.bind_contextvars(webhook_event_id=event_id, webhook_event_type=event_type)


def current_request_id() -> str | None:
    return structlog.contextvars.get_contextvars().get("request_id")


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()
