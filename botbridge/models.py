"""Shared data models for botbridge."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from functools import cached_property
from typing import Any

from pydantic import BaseModel, Field

# --- Enums ---


class AuditEventType(str, Enum):
    AUTH_SUCCESS = "auth_success"
    AUTH_FAILURE = "auth_failure"
    REQUEST_REJECTED = "request_rejected"
    WEBHOOK_DELIVERED = "webhook_delivered"
    WEBHOOK_ABANDONED = "webhook_abandoned"
    WEBHOOK_FILTERED = "webhook_filtered"


class RiskLevel(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


# --- Bot events ---


@dataclass(frozen=True)
class Event:
    """A bot event, immutable for the duration of delivery.

    ``json_bytes`` is the canonical serialization: compact separators,
    UTF-8, key order as produced by the bot. It is what gets signed and
    posted, so it is computed once and cached.
    """

    payload: dict[str, Any] = field(default_factory=dict)

    @cached_property
    def _encoded(self) -> bytes:
        return json.dumps(
            self.payload, ensure_ascii=False, separators=(",", ":"),
        ).encode()

    def json_bytes(self) -> bytes:
        return self._encoded

    def json_string(self) -> str:
        return self._encoded.decode()


# --- Audit Models ---


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class AuditEvent(BaseModel):
    timestamp: str = Field(default_factory=_now_iso)
    event_type: AuditEventType
    source_ip: str | None = None
    action: str
    result: str  # "success" | "failure" | "blocked"
    risk_level: RiskLevel
    details: dict[str, object] | None = None
