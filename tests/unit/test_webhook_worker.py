"""Tests for webhook delivery: signing, filtering, retry and quick operations."""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from botbridge.config import PostTarget
from botbridge.models import AuditEventType
from botbridge.webhook.worker import (
    MAX_ATTEMPTS,
    USER_AGENT,
    WebhookWorker,
    backoff_delay,
    sign_body,
)
from tests.conftest import FakeBot, FilterTable, StaticFilter, make_event

URL = "http://receiver.test/events"


def _responder(statuses: list[int], body: bytes = b"") -> tuple[list[httpx.Request], httpx.MockTransport]:
    """Transport answering with ``statuses`` in order, repeating the last one."""
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        status = statuses[min(len(seen), len(statuses)) - 1]
        return httpx.Response(status, content=body if status < 300 else b"")

    return seen, httpx.MockTransport(handler)


def _make_worker(
    bot: FakeBot,
    transport: httpx.MockTransport,
    **kwargs: Any,
) -> WebhookWorker:
    target = kwargs.pop("target", PostTarget(url=URL))
    return WebhookWorker(
        bot, target, client=httpx.AsyncClient(transport=transport), **kwargs,
    )


class TestSigning:
    def test_signature_is_hmac_sha1_hex(self) -> None:
        body = b'{"post_type":"message"}'
        expected = hmac.new(b"abc", body, hashlib.sha1).hexdigest()
        assert sign_body("abc", body) == f"sha1={expected}"

    def test_backoff_within_bounds(self) -> None:
        for _ in range(200):
            assert 0.5 <= backoff_delay() < 3.0

    def test_backoff_extremes(self) -> None:
        with patch("botbridge.webhook.worker.random.random", return_value=0.0):
            assert backoff_delay() == 0.5
        with patch("botbridge.webhook.worker.random.random", return_value=0.999999):
            assert backoff_delay() < 3.0


class TestHeaders:
    @pytest.mark.asyncio
    async def test_headers_with_secret_and_api_port(self, bot: FakeBot) -> None:
        seen, transport = _responder([200])
        worker = _make_worker(
            bot, transport, target=PostTarget(url=URL, secret="abc"), api_port=5700,
        )
        event = make_event()
        await worker.deliver(event)

        request = seen[0]
        assert request.method == "POST"
        assert request.headers["X-Self-ID"] == "10001"
        assert request.headers["User-Agent"] == USER_AGENT
        assert request.headers["Content-Type"] == "application/json"
        assert request.headers["X-API-Port"] == "5700"
        assert request.headers["X-Signature"] == sign_body("abc", event.json_bytes())
        assert request.content == event.json_bytes()

    @pytest.mark.asyncio
    async def test_no_signature_or_port_by_default(self, bot: FakeBot) -> None:
        seen, transport = _responder([200])
        worker = _make_worker(bot, transport)
        await worker.deliver(make_event())
        assert "X-Signature" not in seen[0].headers
        assert "X-API-Port" not in seen[0].headers


class TestRetry:
    @pytest.mark.asyncio
    async def test_succeeds_on_sixth_attempt(self, bot: FakeBot) -> None:
        reply = json.dumps({"reply": "pong"}).encode()
        seen, transport = _responder([500] * 5 + [200], body=reply)
        worker = _make_worker(bot, transport)
        delays: list[float] = []

        async def capture_sleep(t: float) -> None:
            delays.append(t)

        event = make_event()
        with patch("botbridge.webhook.worker.asyncio.sleep", side_effect=capture_sleep):
            assert await worker.deliver(event) is True

        assert len(seen) == 6
        assert len(delays) == 5
        assert all(0.5 <= d < 3.0 for d in delays)
        assert bot.quick_operations == [(event.payload, {"reply": "pong"})]

    @pytest.mark.asyncio
    async def test_abandons_after_six_failures(self, bot: FakeBot) -> None:
        seen, transport = _responder([503])
        audit = MagicMock()
        worker = _make_worker(bot, transport, audit_logger=audit)

        with patch("botbridge.webhook.worker.asyncio.sleep", new_callable=AsyncMock) as sleep:
            assert await worker.deliver(make_event()) is False

        assert len(seen) == MAX_ATTEMPTS == 6
        # no sleep after the final attempt
        assert sleep.await_count == 5
        assert bot.quick_operations == []
        assert audit.log.call_args[0][0].event_type == AuditEventType.WEBHOOK_ABANDONED

    @pytest.mark.asyncio
    async def test_transport_errors_are_retried(self, bot: FakeBot) -> None:
        attempts = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal attempts
            attempts += 1
            if attempts < 3:
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(200)

        worker = _make_worker(bot, httpx.MockTransport(handler))
        with patch("botbridge.webhook.worker.asyncio.sleep", new_callable=AsyncMock):
            assert await worker.deliver(make_event()) is True
        assert attempts == 3

    @pytest.mark.asyncio
    async def test_each_attempt_is_a_fresh_request(self, bot: FakeBot) -> None:
        seen, transport = _responder([500, 200])
        worker = _make_worker(bot, transport)
        with patch("botbridge.webhook.worker.asyncio.sleep", new_callable=AsyncMock):
            await worker.deliver(make_event())
        assert seen[0] is not seen[1]
        assert seen[0].content == seen[1].content
        assert seen[1].headers["Content-Length"] == str(len(seen[1].content))

    def test_timeout_floor(self, bot: FakeBot) -> None:
        worker = WebhookWorker(bot, PostTarget(url=URL), timeout=1)
        assert worker._timeout == 5


class TestReplies:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [b"", b"   ", b"not json", b"{broken"])
    async def test_non_json_reply_ignored(self, bot: FakeBot, body: bytes) -> None:
        _, transport = _responder([200], body=body)
        worker = _make_worker(bot, transport)
        assert await worker.deliver(make_event()) is True
        assert bot.quick_operations == []

    @pytest.mark.asyncio
    async def test_delivery_audited(self, bot: FakeBot) -> None:
        _, transport = _responder([204])
        audit = MagicMock()
        worker = _make_worker(bot, transport, audit_logger=audit)
        await worker.deliver(make_event())
        event = audit.log.call_args[0][0]
        assert event.event_type == AuditEventType.WEBHOOK_DELIVERED
        assert event.details["status_code"] == 204


class TestFiltering:
    @pytest.mark.asyncio
    async def test_rejected_event_never_posted(self, bot: FakeBot) -> None:
        seen, transport = _responder([200])
        flt = StaticFilter(False)
        worker = _make_worker(
            bot, transport, filter_name="only-groups", filters=FilterTable({"only-groups": flt}),
        )
        event = make_event()
        assert await worker.deliver(event) is False
        assert seen == []
        assert flt.seen == [event.payload]

    @pytest.mark.asyncio
    async def test_accepted_event_posted(self, bot: FakeBot) -> None:
        seen, transport = _responder([200])
        worker = _make_worker(
            bot, transport, filter_name="all", filters=FilterTable({"all": StaticFilter(True)}),
        )
        await worker.deliver(make_event())
        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_unknown_filter_passes_everything(self, bot: FakeBot) -> None:
        seen, transport = _responder([200])
        worker = _make_worker(bot, transport, filter_name="missing", filters=FilterTable({}))
        await worker.deliver(make_event())
        assert len(seen) == 1


class TestQueue:
    @pytest.mark.asyncio
    async def test_events_delivered_in_order(self, bot: FakeBot) -> None:
        seen, transport = _responder([200])
        worker = _make_worker(bot, transport)
        worker.start()
        try:
            for i in range(5):
                bot.emit(make_event(message_id=i))
            await asyncio.wait_for(worker.join(), 5)
        finally:
            await worker.stop()
        assert [json.loads(r.content)["message_id"] for r in seen] == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_full_queue_drops_oldest(self, bot: FakeBot) -> None:
        seen, transport = _responder([200])
        worker = _make_worker(bot, transport, max_queue_size=2)
        for i in range(3):
            worker.submit(make_event(message_id=i))
        worker.start()
        try:
            await asyncio.wait_for(worker.join(), 5)
        finally:
            await worker.stop()
        assert [json.loads(r.content)["message_id"] for r in seen] == [1, 2]

    @pytest.mark.asyncio
    async def test_stop_cancels_in_flight_retries(self, bot: FakeBot) -> None:
        seen, transport = _responder([500])
        worker = _make_worker(bot, transport)
        sleeping = asyncio.Event()

        async def block(_: float) -> None:
            sleeping.set()
            await asyncio.Event().wait()

        with patch("botbridge.webhook.worker.asyncio.sleep", side_effect=block):
            worker.start()
            bot.emit(make_event())
            await asyncio.wait_for(sleeping.wait(), 5)
            await worker.stop()
        assert len(seen) == 1
