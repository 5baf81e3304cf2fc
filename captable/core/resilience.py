"""
Resilience patterns for the database dependency.

1. **Circuit Breaker** — every repository call runs through
   :data:`db_circuit_breaker`.  After ``CB_FAILURE_THRESHOLD`` consecutive
   connection-level failures the circuit opens and calls fail fast with
   :class:`CircuitBreakerError` (rendered as a retryable 503) until
   ``CB_RECOVERY_TIMEOUT`` has passed.  The next call is a probe: success
   closes the circuit, failure opens it again.

2. **Retry with Exponential Backoff** — used only for the startup
   connection and bootstrap.  Gateway mutations are never retried
   automatically; a failed write surfaces to the caller, who decides
   whether to re-issue it.
"""

import asyncio
import functools
import logging
import random
import time
from enum import Enum
from typing import Any, Callable, Iterator, Tuple, Type

from captable.core.config import settings

logger = logging.getLogger(__name__)


# ────────────────────────────────────────────────────────────────────────────
# Circuit Breaker
# ────────────────────────────────────────────────────────────────────────────


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerError(Exception):
    """A call was refused because the circuit is open."""

    def __init__(self, name: str, retry_after: float):
        self.name = name
        self.retry_after = retry_after
        super().__init__(f"Circuit '{name}' is OPEN; retry in {retry_after:.1f}s")


class CircuitBreaker:
    """
    Async circuit breaker.

    Parameters
    ----------
    name : str
        Identifier used in logs and the health check (``"database"``).
    failure_threshold : int
        Consecutive failures that open the circuit.
    recovery_timeout : float
        Seconds the circuit stays open before a probe is allowed.
    expected_exceptions : tuple
        Exception types that count as failures.  Anything else (an
        ``IntegrityError`` from a duplicate email, say) passes through and
        leaves the circuit alone.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        expected_exceptions: Tuple[Type[Exception], ...] = (Exception,),
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exceptions = expected_exceptions

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at = 0.0
        self._success_count = 0

    @property
    def state(self) -> CircuitState:
        """Current state.  An open circuit whose timeout has passed reads HALF_OPEN."""
        if self._state == CircuitState.OPEN and self.retry_after == 0:
            self._state = CircuitState.HALF_OPEN
            logger.info("Circuit '%s' → HALF_OPEN, next call is a probe", self.name)
        return self._state

    @property
    def retry_after(self) -> float:
        """Seconds until an open circuit admits a probe (0 when not open)."""
        if self._state != CircuitState.OPEN:
            return 0.0
        return max(self.recovery_timeout - (time.monotonic() - self._opened_at), 0.0)

    def _on_success(self) -> None:
        if self._state != CircuitState.CLOSED:
            logger.info("Circuit '%s' → CLOSED after successful probe", self.name)
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count += 1

    def _on_failure(self, exc: Exception) -> None:
        self._failure_count += 1
        if self._state == CircuitState.HALF_OPEN or self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            self._opened_at = time.monotonic()
            logger.error(
                "Circuit '%s' → OPEN after %d failure(s) (%s); failing fast for %.1fs",
                self.name,
                self._failure_count,
                type(exc).__name__,
                self.recovery_timeout,
            )
        else:
            logger.warning(
                "Circuit '%s' failure %d/%d: %s",
                self.name,
                self._failure_count,
                self.failure_threshold,
                exc,
            )

    async def call(self, func: Callable, *args: Any, **kwargs: Any) -> Any:
        """
        Await ``func(*args, **kwargs)`` through the breaker.

        Raises :class:`CircuitBreakerError` without calling ``func`` while
        the circuit is open.
        """
        if self.state == CircuitState.OPEN:
            raise CircuitBreakerError(self.name, self.retry_after)

        try:
            result = await func(*args, **kwargs)
        except self.expected_exceptions as exc:
            self._on_failure(exc)
            raise
        self._on_success()
        return result

    def reset(self) -> None:
        """Force the circuit closed."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at = 0.0

    def get_status(self) -> dict:
        """Snapshot for the health-check endpoint."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self._failure_count,
            "failure_threshold": self.failure_threshold,
            "success_count": self._success_count,
            "recovery_timeout_s": self.recovery_timeout,
            "retry_after_s": round(self.retry_after, 1),
        }


def _database_failures() -> Tuple[Type[Exception], ...]:
    # OperationalError covers connection loss and timeouts raised by the driver
    from sqlalchemy.exc import OperationalError

    return (OperationalError, ConnectionError, OSError, TimeoutError)


db_circuit_breaker = CircuitBreaker(
    name="database",
    failure_threshold=settings.CB_FAILURE_THRESHOLD,
    recovery_timeout=settings.CB_RECOVERY_TIMEOUT,
    expected_exceptions=_database_failures(),
)


# ────────────────────────────────────────────────────────────────────────────
# Retry with Exponential Backoff
# ────────────────────────────────────────────────────────────────────────────


def _backoff_delays(base_delay: float, max_delay: float, jitter: bool) -> Iterator[float]:
    """``base, 2*base, 4*base, ...`` capped at ``max_delay``, plus up to 50% jitter."""
    delay = base_delay
    while True:
        actual = min(delay, max_delay)
        if jitter:
            actual += random.uniform(0, actual * 0.5)
        yield actual
        delay *= 2


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 10.0,
    jitter: bool = True,
    retryable_exceptions: Tuple[Type[Exception], ...] = (
        ConnectionError,
        OSError,
        TimeoutError,
    ),
) -> Callable:
    """
    Decorator: retry an async function with exponential backoff.

    ``max_retries`` counts retries after the first attempt (0 means a
    single call).  Only ``retryable_exceptions`` trigger a retry; once the
    retries are used up the last exception is re-raised.
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            delays = _backoff_delays(base_delay, max_delay, jitter)
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except retryable_exceptions as exc:
                    if attempt >= max_retries:
                        logger.error(
                            "%s failed after %d retries: %s: %s",
                            func.__qualname__,
                            max_retries,
                            type(exc).__name__,
                            exc,
                        )
                        raise
                    attempt += 1
                    delay = next(delays)
                    logger.warning(
                        "Retry %d/%d for %s in %.2fs (%s: %s)",
                        attempt,
                        max_retries,
                        func.__qualname__,
                        delay,
                        type(exc).__name__,
                        exc,
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator
