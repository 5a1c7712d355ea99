"""Long polling: clients pull queued events through the ``get_updates`` action."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any

from botbridge.gateway.caller import CallNext, ok
from botbridge.interfaces import Bot
from botbridge.models import Event

logger = logging.getLogger(__name__)

GET_UPDATES = "get_updates"


class EventQueue:
    """Bounded FIFO of event payloads; the oldest entries are dropped on overflow."""

    def __init__(self, max_size: int = 2000) -> None:
        self._max_size = max_size
        self._events: deque[dict[str, Any]] = deque()
        self._ready = asyncio.Event()

    def __len__(self) -> int:
        return len(self._events)

    def push(self, event: Event) -> None:
        self._events.append(event.payload)
        while self._max_size and len(self._events) > self._max_size:
            self._events.popleft()
        self._ready.set()

    async def take(self, limit: int = 0, timeout: float = 0) -> list[dict[str, Any]]:
        """Wait for events and remove up to ``limit`` of them (0 means all).

        With a positive ``timeout`` an empty list is returned once it
        elapses without any event arriving.
        """
        if timeout > 0:
            try:
                await asyncio.wait_for(self._wait_nonempty(), timeout)
            except TimeoutError:
                return []
        else:
            await self._wait_nonempty()

        count = len(self._events) if limit <= 0 else min(limit, len(self._events))
        return [self._events.popleft() for _ in range(count)]

    async def _wait_nonempty(self) -> None:
        while not self._events:
            self._ready.clear()
            await self._ready.wait()


class LongPollingMiddleware:
    """Serves ``get_updates`` from events the bot pushes; passes other actions on."""

    def __init__(self, bot: Bot, max_queue_size: int) -> None:
        self.queue = EventQueue(max_queue_size)
        bot.on_event_push(self.queue.push)

    async def __call__(
        self, action: str, params: Any, call_next: CallNext,
    ) -> dict[str, Any]:
        if action != GET_UPDATES:
            return await call_next(action, params)
        limit = params.get("limit").integer() if params is not None else 0
        timeout = params.get("timeout").integer() if params is not None else 0
        events = await self.queue.take(limit=limit, timeout=timeout)
        logger.debug("get_updates returned %d event(s)", len(events))
        return ok(events)
