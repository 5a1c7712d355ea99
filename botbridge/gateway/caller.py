"""Action dispatch with a composable middleware chain."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from botbridge.interfaces import ActionExecutor

logger = logging.getLogger(__name__)

CallNext = Callable[[str, Any], Awaitable[dict[str, Any]]]


class ActionMiddleware(Protocol):
    """Wraps an action call.

    A middleware may await ``call_next`` (optionally transforming the
    result), or return its own document to short-circuit the chain.
    """

    async def __call__(
        self, action: str, params: Any, call_next: CallNext,
    ) -> dict[str, Any]: ...


def ok(data: Any = None) -> dict[str, Any]:
    return {"data": data, "retcode": 0, "status": "ok"}


def failed(retcode: int, msg: str = "", wording: str = "") -> dict[str, Any]:
    return {
        "data": None,
        "retcode": retcode,
        "msg": msg,
        "wording": wording,
        "status": "failed",
    }


class ActionCaller:
    """Dispatches actions to the executor through registered middleware.

    Middleware runs in registration order: the first one registered sees
    the call first and the result last.
    """

    def __init__(self, executor: ActionExecutor) -> None:
        self._executor = executor
        self._middlewares: list[ActionMiddleware] = []

    def use(self, middleware: ActionMiddleware) -> None:
        self._middlewares.append(middleware)

    async def call(self, action: str, params: Any) -> dict[str, Any]:
        logger.debug("Dispatching action %s", action)
        return await self._dispatch(0, action, params)

    async def _dispatch(self, index: int, action: str, params: Any) -> dict[str, Any]:
        if index == len(self._middlewares):
            return await self._executor.call(action, params)

        async def call_next(next_action: str, next_params: Any) -> dict[str, Any]:
            return await self._dispatch(index + 1, next_action, next_params)

        return await self._middlewares[index](action, params, call_next)
