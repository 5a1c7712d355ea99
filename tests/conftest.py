"""Shared test fixtures for botbridge."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any
from unittest.mock import MagicMock

import pytest

from botbridge.audit.logger import AuditLogger
from botbridge.models import Event


class FakeBot:
    """In-memory bot: records quick operations and emits events on demand."""

    def __init__(self, self_id: int = 10001) -> None:
        self._self_id = self_id
        self.callbacks: list[Callable[[Event], None]] = []
        self.quick_operations: list[tuple[dict[str, Any], Any]] = []

    @property
    def self_id(self) -> int:
        return self._self_id

    def on_event_push(self, callback: Callable[[Event], None]) -> None:
        self.callbacks.append(callback)

    def emit(self, event: Event) -> None:
        for callback in self.callbacks:
            callback(event)

    def handle_quick_operation(self, event: dict[str, Any], instruction: Any) -> None:
        self.quick_operations.append((event, instruction))


class RecordingExecutor:
    """Action executor that records calls and echoes the action name."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, Any]] = []

    async def call(self, action: str, params: Any) -> dict[str, Any]:
        self.calls.append((action, params))
        return {"status": "ok", "retcode": 0, "data": {"action": action}}


class StaticFilter:
    def __init__(self, result: bool) -> None:
        self.result = result
        self.seen: list[dict[str, Any]] = []

    def eval(self, payload: dict[str, Any]) -> bool:
        self.seen.append(payload)
        return self.result


class FilterTable:
    def __init__(self, filters: dict[str, StaticFilter]) -> None:
        self._filters = filters

    def find(self, name: str) -> StaticFilter | None:
        return self._filters.get(name)


@pytest.fixture
def bot() -> FakeBot:
    return FakeBot()


@pytest.fixture
def executor() -> RecordingExecutor:
    return RecordingExecutor()


@pytest.fixture
def mock_audit_logger() -> MagicMock:
    return MagicMock(spec=AuditLogger)


# --- Factory functions for test data ---


def make_event(**kwargs: Any) -> Event:
    """Factory for Event with a typical private message payload."""
    payload: dict[str, Any] = {
        "time": 1700000000,
        "self_id": 10001,
        "post_type": "message",
        "message_type": "private",
        "user_id": 42,
        "message": "hello",
    }
    payload.update(kwargs)
    return Event(payload)
