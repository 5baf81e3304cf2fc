"""
In-process change feed.

Services publish a :class:`ChangeEvent` after every committed write.
Listeners register with :meth:`ChangeFeed.on_change` and get back an
unsubscribe callable.  The read cache is one listener; the SSE endpoint
(``GET /api/v1/changes/stream``) adapts the feed to HTTP clients through
:meth:`ChangeFeed.stream`.

State is entirely in memory.  Clients reconnect and refetch on restart.
"""

import asyncio
import json
import logging
import time
from dataclasses import asdict, dataclass
from typing import AsyncGenerator, Callable, FrozenSet, List, Optional, Tuple

logger = logging.getLogger(__name__)

# Seconds between SSE keepalive comments
KEEPALIVE_INTERVAL = 15.0

INSERT = "insert"
UPDATE = "update"
DELETE = "delete"


@dataclass(frozen=True)
class ChangeEvent:
    """A committed write to one table."""

    table: str
    action: str
    key: Optional[str] = None


Listener = Callable[[ChangeEvent], None]


class ChangeFeed:
    """Synchronous fan-out of :class:`ChangeEvent` to registered listeners."""

    def __init__(self) -> None:
        self._listeners: List[Tuple[Listener, Optional[FrozenSet[str]]]] = []

    def on_change(
        self, callback: Listener, tables: Optional[List[str]] = None
    ) -> Callable[[], None]:
        """
        Register ``callback`` for events on ``tables`` (all tables when None).

        Returns a function that removes the registration.  Calling it more
        than once is harmless.
        """
        entry = (callback, frozenset(tables) if tables else None)
        self._listeners.append(entry)

        def unsubscribe() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return unsubscribe

    def publish(self, event: ChangeEvent) -> int:
        """Deliver ``event`` to every matching listener.  Returns the count notified."""
        notified = 0
        for callback, tables in list(self._listeners):
            if tables is not None and event.table not in tables:
                continue
            try:
                callback(event)
            except Exception:
                # One broken listener must not block the write that already committed
                logger.exception("Change listener failed for %s", event)
                continue
            notified += 1
        return notified

    def emit(self, table: str, action: str, key: Optional[object] = None) -> int:
        """Shorthand for ``publish(ChangeEvent(...))``."""
        return self.publish(ChangeEvent(table, action, None if key is None else str(key)))

    async def stream(
        self,
        tables: Optional[List[str]] = None,
        max_queue_size: int = 100,
        keepalive: float = KEEPALIVE_INTERVAL,
    ) -> AsyncGenerator[str, None]:
        """
        Async generator yielding SSE-formatted change events.

        Emits a keepalive comment every ``keepalive`` seconds of silence.
        A slow consumer whose queue fills up loses the overflow events.
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue_size)

        def _enqueue(event: ChangeEvent) -> None:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("Change stream queue full, dropping %s", event)

        unsubscribe = self.on_change(_enqueue, tables)
        try:
            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=keepalive)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                payload = {**asdict(event), "timestamp": time.time()}
                yield f"event: change\ndata: {json.dumps(payload)}\n\n"
        finally:
            unsubscribe()

    @property
    def listener_count(self) -> int:
        return len(self._listeners)


# Module-level singleton
change_feed = ChangeFeed()
