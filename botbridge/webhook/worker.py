"""Webhook delivery: relays bot events to one HTTP destination.

Per event:
1. Filter (events rejected by the configured filter are dropped)
2. Sign the canonical JSON body with HMAC-SHA1 when a secret is set
3. POST, retrying with jittered backoff
4. Feed a JSON reply back to the bot as a quick operation

Events are queued per worker and delivered strictly in arrival order.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import logging
import random
from typing import Any

import httpx

from botbridge.audit.logger import AuditLogger
from botbridge.config import PostTarget
from botbridge.interfaces import Bot, FilterRegistry
from botbridge.models import AuditEvent, AuditEventType, Event, RiskLevel

logger = logging.getLogger(__name__)

USER_AGENT = "CQHttp/4.15.0"
MAX_ATTEMPTS = 6  # 1 initial + 5 retries
MIN_TIMEOUT_SECONDS = 5
_MIN_BACKOFF_SECONDS = 0.5
_MAX_BACKOFF_SECONDS = 3.0


def sign_body(secret: str, body: bytes) -> str:
    """Return the ``X-Signature`` header value for ``body``."""
    digest = hmac.new(secret.encode(), body, hashlib.sha1).hexdigest()
    return f"sha1={digest}"


def backoff_delay() -> float:
    """Uniform delay in [0.5s, 3s) between delivery attempts."""
    return _MIN_BACKOFF_SECONDS + random.random() * (_MAX_BACKOFF_SECONDS - _MIN_BACKOFF_SECONDS)


class WebhookWorker:
    """Delivers every matching bot event to a single destination."""

    def __init__(
        self,
        bot: Bot,
        target: PostTarget,
        *,
        filter_name: str = "",
        filters: FilterRegistry | None = None,
        timeout: int = MIN_TIMEOUT_SECONDS,
        api_port: int = 0,
        max_queue_size: int = 1024,
        audit_logger: AuditLogger | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._bot = bot
        self.url = target.url
        self._secret = target.secret
        self._filter_name = filter_name
        self._filters = filters
        self._timeout = max(timeout, MIN_TIMEOUT_SECONDS)
        self._api_port = api_port
        self._audit = audit_logger
        self._client = client or httpx.AsyncClient()
        self._owns_client = client is None
        self._queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=max_queue_size)
        self._task: asyncio.Task[None] | None = None

    # --- lifecycle ---

    def start(self) -> None:
        """Subscribe to bot events and start draining the queue."""
        self._bot.on_event_push(self.submit)
        self._task = asyncio.create_task(self._run())
        logger.info("Webhook worker started for %s", self.url)

    async def stop(self) -> None:
        """Cancel the drain task, including any retry sequence in progress."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._owns_client:
            await self._client.aclose()

    def submit(self, event: Event) -> None:
        """Queue ``event`` for delivery, dropping the oldest queued event when full."""
        if self._queue.full():
            dropped = self._queue.get_nowait()
            self._queue.task_done()
            logger.warning(
                "Webhook queue for %s is full, dropped event %s",
                self.url, dropped.json_string(),
            )
        self._queue.put_nowait(event)

    async def join(self) -> None:
        """Wait until every queued event has been handled."""
        await self._queue.join()

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self.deliver(event)
            except Exception:
                logger.exception("Unexpected error delivering event to %s", self.url)
            finally:
                self._queue.task_done()

    # --- delivery ---

    def _passes_filter(self, event: Event) -> bool:
        if not self._filter_name or self._filters is None:
            return True
        flt = self._filters.find(self._filter_name)
        if flt is None:
            return True
        return flt.eval(event.payload)

    def build_headers(self, body: bytes) -> dict[str, str]:
        headers = {
            "X-Self-ID": str(self._bot.self_id),
            "User-Agent": USER_AGENT,
            "Content-Type": "application/json",
        }
        if self._secret:
            headers["X-Signature"] = sign_body(self._secret, body)
        if self._api_port:
            headers["X-API-Port"] = str(self._api_port)
        return headers

    async def deliver(self, event: Event) -> bool:
        """Deliver one event. Returns True when the destination accepted it."""
        if not self._passes_filter(event):
            logger.debug("Event to %s filtered out: %s", self.url, event.json_string())
            self._audit_event(AuditEventType.WEBHOOK_FILTERED, "blocked", RiskLevel.INFO)
            return False

        body = event.json_bytes()
        headers = self.build_headers(body)
        response = await self._post_with_retry(body, headers)
        if response is None:
            logger.warning(
                "Giving up delivering event %s to %s after %d attempts",
                event.json_string(), self.url, MAX_ATTEMPTS,
            )
            self._audit_event(AuditEventType.WEBHOOK_ABANDONED, "failure", RiskLevel.MEDIUM)
            return False

        logger.debug("Delivered event %s to %s", event.json_string(), self.url)
        self._audit_event(
            AuditEventType.WEBHOOK_DELIVERED, "success", RiskLevel.INFO,
            status_code=response.status_code,
        )
        self._handle_reply(event, response.content)
        return True

    async def _post_with_retry(
        self, body: bytes, headers: dict[str, str],
    ) -> httpx.Response | None:
        for attempt in range(1, MAX_ATTEMPTS + 1):
            # A fresh request per attempt; a reused one can carry a stale body length.
            try:
                request = self._client.build_request(
                    "POST", self.url, content=body, headers=headers, timeout=self._timeout,
                )
            except httpx.InvalidURL as exc:
                logger.warning("Cannot build request to %s: %s", self.url, exc)
                return None

            try:
                response = await self._client.send(request)
            except httpx.HTTPError as exc:
                reason = str(exc) or type(exc).__name__
            else:
                if response.is_success:
                    return response
                reason = f"HTTP {response.status_code}"

            if attempt < MAX_ATTEMPTS:
                logger.warning(
                    "Delivering event to %s failed: %s, retry %d of %d",
                    self.url, reason, attempt, MAX_ATTEMPTS - 1,
                )
                await asyncio.sleep(backoff_delay())
            else:
                logger.warning("Delivering event to %s failed: %s", self.url, reason)
        return None

    def _handle_reply(self, event: Event, content: bytes) -> None:
        if not content.strip():
            return
        try:
            instruction: Any = json.loads(content)
        except ValueError:
            logger.debug("Ignoring non-JSON reply from %s", self.url)
            return
        self._bot.handle_quick_operation(event.payload, instruction)

    def _audit_event(
        self,
        event_type: AuditEventType,
        result: str,
        risk_level: RiskLevel,
        **details: object,
    ) -> None:
        if self._audit:
            self._audit.log(AuditEvent(
                event_type=event_type,
                action=f"webhook:{self.url}",
                result=result,
                risk_level=risk_level,
                details={"url": self.url, **details},
            ))
