"""Bounded retry with exponential backoff and an overall deadline."""

import asyncio
from typing import Awaitable, Callable, TypeVar

from consultpay.core.config import Settings
from consultpay.core.exceptions import GatewayUnavailable
from consultpay.core.logging import get_logger
from consultpay.gateway.base import GatewayTransientError

log = get_logger(__name__)

T = TypeVar("T")


def backoff_seconds(base: float, attempt: int) -> float:
    """Delay before retry number `attempt` (1-based): base, 2*base, 4*base..."""
    return max(0.0, base) * (2 ** (attempt - 1))


async def call_with_retry(
    operation: str,
    call: Callable[[], Awaitable[T]],
    settings: Settings,
) -> T:
    """Run `call` until it succeeds, raising GatewayUnavailable when attempts or time run out.

    Only GatewayTransientError is retried; anything else propagates at once.
    A timeout means the gateway may have acted, so callers must not treat it
    as a failure of the payment itself.
    """
    attempts = max(1, settings.gateway_max_attempts)

    async def _attempts() -> T:
        last_error: Exception | None = None
        for attempt in range(1, attempts + 1):
            try:
                return await call()
            except GatewayTransientError as e:
                last_error = e
                log.warning("gateway_call_retry", operation=operation, attempt=attempt, reason=str(e))
                if attempt < attempts:
                    await asyncio.sleep(backoff_seconds(settings.gateway_backoff_base_seconds, attempt))
        raise GatewayUnavailable(
            f"Gateway {operation} failed after {attempts} attempts",
            details={"operation": operation, "reason": str(last_error)},
        )

    try:
        return await asyncio.wait_for(_attempts(), timeout=settings.gateway_timeout_seconds)
    except asyncio.TimeoutError as e:
        log.error("gateway_call_timeout", operation=operation, timeout=settings.gateway_timeout_seconds)
        raise GatewayUnavailable(
            f"Gateway {operation} timed out",
            details={"operation": operation, "timeout_seconds": settings.gateway_timeout_seconds},
        ) from e
