"""Fan-out of execution events to every connected observer."""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Protocol

from ..config import OBSERVER_SEND_TIMEOUT
from ..models.events import ExecutionEvent

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


class Observer(Protocol):
    """What the broadcaster needs from a connection (aiohttp's WebSocketResponse fits)."""

    @property
    def closed(self) -> bool: ...

    async def send_str(self, data: str) -> None: ...


class EventBroadcaster:
    """Best-effort, at-most-once delivery to all observers.

    Every observer receives every session's events; there is no per-session
    filtering and no backlog for observers that connect mid-run. An observer
    that cannot take a message is skipped for that message, never retried.
    One that does not accept it within ``send_timeout`` seconds is dropped.
    """

    def __init__(self, send_timeout: float = OBSERVER_SEND_TIMEOUT):
        self._observers: set[Observer] = set()
        self._send_timeout = send_timeout

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    def add(self, observer: Observer):
        self._observers.add(observer)
        logger.info(f"Observer connected ({len(self._observers)} total)")

    def remove(self, observer: Observer):
        if observer in self._observers:
            self._observers.discard(observer)
            logger.info(f"Observer disconnected ({len(self._observers)} total)")

    async def publish(self, event: ExecutionEvent) -> int:
        """Send ``event`` to every open observer at once. Returns how many accepted it."""
        message = event.to_json()
        targets = [observer for observer in self._observers if not observer.closed]
        results = await asyncio.gather(*(self._deliver(observer, message, event) for observer in targets))
        delivered = sum(results)
        logger.debug(f"{event.type} for session {event.session_id} delivered to {delivered} observer(s)")
        return delivered

    async def _deliver(self, observer: Observer, message: str, event: ExecutionEvent) -> bool:
        try:
            await asyncio.wait_for(observer.send_str(message), self._send_timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning(
                f"Dropping observer: {event.type} (session {event.session_id}) "
                f"not accepted within {self._send_timeout}s"
            )
            self.remove(observer)
        except (ConnectionError, RuntimeError) as e:
            logger.warning(f"Skipping observer for {event.type} (session {event.session_id}): {e}")
        return False
