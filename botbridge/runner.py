"""Starts the HTTP gateway and webhook workers for one ``http`` config node."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx
from pydantic import ValidationError

from botbridge.audit.logger import AuditLogger
from botbridge.config import ServerConfig
from botbridge.gateway.app import create_app
from botbridge.gateway.caller import ActionCaller
from botbridge.gateway.long_polling import LongPollingMiddleware
from botbridge.gateway.rate_limiter import RateLimitMiddleware
from botbridge.gateway.server import GatewayServer
from botbridge.interfaces import ActionExecutor, Bot, FilterRegistry
from botbridge.webhook.worker import WebhookWorker

logger = logging.getLogger(__name__)


@dataclass
class HttpBridge:
    """What :func:`run_http` started; ``shutdown`` stops all of it."""

    config: ServerConfig | None = None
    server: GatewayServer | None = None
    workers: list[WebhookWorker] = field(default_factory=list)

    async def shutdown(self) -> None:
        if self.server is not None:
            await self.server.shutdown()
        for worker in self.workers:
            await worker.stop()


def build_caller(bot: Bot, executor: ActionExecutor, config: ServerConfig) -> ActionCaller:
    caller = ActionCaller(executor)
    rate_limit = config.middlewares.rate_limit
    if rate_limit.enabled:
        caller.use(RateLimitMiddleware(rate_limit.frequency, rate_limit.bucket))
    if config.long_polling.enabled:
        caller.use(LongPollingMiddleware(bot, config.long_polling.max_queue_size))
    return caller


async def run_http(
    bot: Bot,
    executor: ActionExecutor,
    node: Any,
    *,
    filters: FilterRegistry | None = None,
    api_port: int = 0,
    audit_logger: AuditLogger | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> HttpBridge:
    """Decode ``node`` and start whatever it enables.

    The listener and the webhook workers are started independently: the
    listener needs ``enabled`` plus a host and port, workers need
    ``post-enabled`` and a non-empty destination URL. Workers share
    ``http_client`` when one is given and the caller owns closing it.
    """
    try:
        config = ServerConfig.model_validate(node)
    except ValidationError as exc:
        logger.warning("Failed to read http config: %s", exc)
        return HttpBridge()

    bridge = HttpBridge(config=config)

    if config.listener_configured:
        caller = build_caller(bot, executor, config)
        app = create_app(caller, config.access_token, audit_logger)
        bridge.server = GatewayServer(app, config.host, config.port)
        await bridge.server.start()

    if config.post_enabled:
        for target in config.post:
            if not target.url:
                continue
            worker = WebhookWorker(
                bot,
                target,
                filter_name=config.filter_name,
                filters=filters,
                timeout=config.timeout,
                api_port=api_port,
                max_queue_size=config.post_queue_size,
                audit_logger=audit_logger,
                client=http_client,
            )
            worker.start()
            bridge.workers.append(worker)

    return bridge
