"""Outbound webhook delivery for bot events."""

from botbridge.webhook.worker import (
    MAX_ATTEMPTS,
    USER_AGENT,
    WebhookWorker,
    backoff_delay,
    sign_body,
)

__all__ = [
    "MAX_ATTEMPTS",
    "USER_AGENT",
    "WebhookWorker",
    "backoff_delay",
    "sign_body",
]
