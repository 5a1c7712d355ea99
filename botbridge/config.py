"""Configuration models and loading for the HTTP bridge.

A process assembles the list of :class:`ServerDefinition` descriptors it
supports and passes it to :func:`load_servers`, which pairs each
definition with the raw config nodes found in the config file and the
environment. Nodes are decoded into :class:`ServerConfig` by the runner.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "on", "y", "t"}
_FALSE_VALUES = {"0", "false", "no", "off", "n", "f"}


class ConfigError(Exception):
    """Raised when a config file cannot be read or parsed."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid config file {path}: {reason}")


# --- Models ---


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class PostTarget(_Frozen):
    url: str = ""
    secret: str = ""


class LongPollingConfig(_Frozen):
    enabled: bool = False
    # 0 means unbounded
    max_queue_size: int = Field(2000, alias="max-queue-size", ge=0)


class RateLimitConfig(_Frozen):
    enabled: bool = False
    frequency: float = Field(1.0, gt=0)
    bucket: int = Field(1, ge=1)


class MiddlewareConfig(_Frozen):
    access_token: str = Field("", alias="access-token")
    filter: str = ""
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig, alias="rate-limit")


class ServerConfig(_Frozen):
    """Decoded ``http`` server node. Immutable once loaded."""

    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = Field(5700, ge=0, le=65535)
    timeout: int = 5
    long_polling: LongPollingConfig = Field(
        default_factory=LongPollingConfig, alias="long-polling",
    )
    middlewares: MiddlewareConfig = Field(default_factory=MiddlewareConfig)
    post: tuple[PostTarget, ...] = ()
    post_enabled: bool = Field(True, alias="post-enabled")
    post_queue_size: int = Field(1024, alias="post-queue-size", ge=1)

    @model_validator(mode="before")
    @classmethod
    def _accept_disabled_flag(cls, data: Any) -> Any:
        if isinstance(data, dict) and "disabled" in data:
            data = dict(data)
            disabled = data.pop("disabled")
            data.setdefault("enabled", not disabled)
        return data

    @property
    def access_token(self) -> str:
        return self.middlewares.access_token

    @property
    def filter_name(self) -> str:
        return self.middlewares.filter

    @property
    def listener_configured(self) -> bool:
        return self.enabled and bool(self.host) and self.port != 0


# --- Server definitions ---


@dataclass(frozen=True)
class ServerDefinition:
    """Describes one kind of server a process can run."""

    name: str
    brief: str
    default: Mapping[str, Any]
    parse_env: Callable[[Mapping[str, str]], dict[str, Any] | None] | None = None


DEFAULT_HTTP_SERVER: dict[str, Any] = {
    "host": "127.0.0.1",
    "port": 5700,
    # webhook timeout in seconds, values below 5 are raised to 5
    "timeout": 5,
    "long-polling": {
        "enabled": False,
        # 0 disables the bound, use with care
        "max-queue-size": 2000,
    },
    "middlewares": {
        "access-token": "",
        "filter": "",
        "rate-limit": {"enabled": False, "frequency": 1, "bucket": 1},
    },
    "post-enabled": True,
    "post": [],
}


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    return default


def parse_http_env(environ: Mapping[str, str]) -> dict[str, Any] | None:
    """Build an ``http`` node from ``BOTBRIDGE_*`` variables.

    Returns None unless ``BOTBRIDGE_HTTP_PORT`` is set.
    """
    raw_port = environ.get("BOTBRIDGE_HTTP_PORT", "")
    if not raw_port:
        return None
    try:
        port = int(raw_port)
    except ValueError:
        logger.warning("Ignoring non-numeric BOTBRIDGE_HTTP_PORT=%r", raw_port)
        port = 5700

    node: dict[str, Any] = {
        "enabled": not _env_bool(environ.get("BOTBRIDGE_HTTP_DISABLE"), False),
        "host": environ.get("BOTBRIDGE_HTTP_HOST") or "0.0.0.0",
        "port": port or 5700,
        "middlewares": {"access-token": environ.get("BOTBRIDGE_ACCESS_TOKEN", "")},
        "post": [],
    }
    post_url = environ.get("BOTBRIDGE_HTTP_POST_URL", "")
    if post_url:
        node["post"].append({
            "url": post_url,
            "secret": environ.get("BOTBRIDGE_HTTP_POST_SECRET", ""),
        })
    return node


HTTP_SERVER = ServerDefinition(
    name="http",
    brief="HTTP API gateway and webhook delivery",
    default=DEFAULT_HTTP_SERVER,
    parse_env=parse_http_env,
)


# --- Loading ---


def load_config_file(path: str) -> dict[str, Any]:
    """Read a JSON config file of the form ``{"servers": [{"http": {...}}]}``."""
    config_path = Path(path)
    if not config_path.exists():
        raise ConfigError(path, "file not found")
    try:
        raw = json.loads(config_path.read_text())
    except json.JSONDecodeError as exc:
        raise ConfigError(path, str(exc)) from exc
    if not isinstance(raw, dict):
        raise ConfigError(path, "top level must be an object")
    return raw


def load_servers(
    definitions: list[ServerDefinition],
    raw_config: Mapping[str, Any] | None,
    environ: Mapping[str, str] | None = None,
) -> list[tuple[ServerDefinition, Any]]:
    """Pair each configured server node with its definition.

    Nodes from ``raw_config["servers"]`` come first, in file order, followed
    by nodes built from the environment. Entries naming an unknown server
    are logged and skipped.
    """
    if environ is None:
        environ = os.environ
    by_name = {d.name: d for d in definitions}
    servers: list[tuple[ServerDefinition, Any]] = []

    for entry in (raw_config or {}).get("servers") or []:
        if not isinstance(entry, dict):
            logger.warning("Skipping malformed server entry: %r", entry)
            continue
        for name, node in entry.items():
            definition = by_name.get(name)
            if definition is None:
                logger.warning("Unknown server type %r in config, skipped", name)
                continue
            servers.append((definition, node))

    for definition in definitions:
        if definition.parse_env is None:
            continue
        node = definition.parse_env(environ)
        if node is not None:
            logger.info("Loaded %s server config from environment", definition.name)
            servers.append((definition, node))

    return servers
