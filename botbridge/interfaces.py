"""Protocols for the collaborators botbridge is wired to.

The bot client, its action executor and the event filter registry live
outside this package; these are the narrow surfaces botbridge relies on.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from botbridge.models import Event


class Bot(Protocol):
    """Event source and quick-operation sink."""

    @property
    def self_id(self) -> int: ...

    def on_event_push(self, callback: Callable[[Event], None]) -> None:
        """Register ``callback``; it is invoked on the event loop once per event."""

    def handle_quick_operation(
        self, event: dict[str, Any], instruction: Any,
    ) -> None: ...


class ActionExecutor(Protocol):
    """Runs named bot actions. Must tolerate concurrent calls.

    Domain errors are reported inside the returned document, never raised.
    """

    async def call(self, action: str, params: Any) -> dict[str, Any]: ...


class Filter(Protocol):
    def eval(self, payload: dict[str, Any]) -> bool: ...


class FilterRegistry(Protocol):
    def find(self, name: str) -> Filter | None: ...
