"""Listener lifecycle for the API gateway."""

from __future__ import annotations

import asyncio
import logging
import socket
import sys
from enum import Enum

import uvicorn
from fastapi import FastAPI

logger = logging.getLogger(__name__)

BIND_FAILURE_GRACE_SECONDS = 5
SHUTDOWN_TIMEOUT_SECONDS = 5


class ServerState(str, Enum):
    UNCONFIGURED = "unconfigured"
    STARTING = "starting"
    LISTENING = "listening"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


class GatewayServer:
    """Runs the gateway app under uvicorn on a socket bound up front.

    Binding before handing the socket to uvicorn lets a busy port be
    reported here: the process logs it, waits a grace period and exits.
    """

    def __init__(self, app: FastAPI, host: str, port: int) -> None:
        self.app = app
        self.host = host
        self.port = port
        self.state = ServerState.UNCONFIGURED
        self._server: uvicorn.Server | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    def _bind(self) -> socket.socket:
        family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
        return socket.create_server((self.host, self.port), family=family)

    async def start(self) -> None:
        self.state = ServerState.STARTING
        try:
            sock = self._bind()
        except OSError as exc:
            await self._fail_fast(exc)
            return

        config = uvicorn.Config(self.app, log_config=None, lifespan="off")
        self._server = uvicorn.Server(config)
        self._task = asyncio.create_task(self._server.serve(sockets=[sock]))
        self.state = ServerState.LISTENING
        logger.info("HTTP gateway listening on %s", self.address)

    async def _fail_fast(self, exc: OSError) -> None:
        logger.error("Failed to bind %s: %s", self.address, exc)
        logger.info("HTTP gateway could not start, check whether the port is in use")
        logger.warning("Exiting in %d seconds", BIND_FAILURE_GRACE_SECONDS)
        await asyncio.sleep(BIND_FAILURE_GRACE_SECONDS)
        sys.exit(1)

    async def shutdown(self) -> None:
        """Stop accepting requests, allowing in-flight ones a bounded grace period."""
        if self._server is None or self._task is None:
            self.state = ServerState.STOPPED
            return

        self.state = ServerState.SHUTTING_DOWN
        self._server.should_exit = True
        try:
            await asyncio.wait_for(asyncio.shield(self._task), SHUTDOWN_TIMEOUT_SECONDS)
        except TimeoutError:
            logger.warning(
                "HTTP gateway did not stop within %d seconds, forcing exit",
                SHUTDOWN_TIMEOUT_SECONDS,
            )
            self._server.force_exit = True
            self._task.cancel()
        self.state = ServerState.STOPPED
        logger.info("HTTP gateway on %s stopped", self.address)
