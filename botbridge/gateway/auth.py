"""Access token check for the API gateway."""

from __future__ import annotations

import hmac
from enum import IntEnum

from starlette.requests import Request

from botbridge.audit.logger import AuditLogger
from botbridge.models import AuditEvent, AuditEventType, RiskLevel


class AuthResult(IntEnum):
    """HTTP status for each auth outcome.

    Missing and wrong credentials are kept apart so callers can tell
    "nothing sent" (401) from "wrong token sent" (403).
    """

    OK = 200
    UNAUTHORIZED = 401
    FORBIDDEN = 403


def extract_credential(request: Request) -> str:
    """Read the caller's token from ``Authorization`` or ``?access_token=``.

    The scheme word of the header is ignored; only the part after the first
    space is used. A header without a space is taken as the token itself.
    """
    auth = request.headers.get("authorization", "")
    if not auth:
        return request.query_params.get("access_token", "")
    _, sep, credential = auth.partition(" ")
    return credential if sep else auth


def check_auth(
    request: Request,
    token: str,
    audit_logger: AuditLogger | None = None,
) -> AuthResult:
    if not token:
        return AuthResult.OK

    credential = extract_credential(request)
    if not credential:
        result = AuthResult.UNAUTHORIZED
    elif hmac.compare_digest(credential.encode(), token.encode()):
        result = AuthResult.OK
    else:
        result = AuthResult.FORBIDDEN

    if audit_logger:
        _log_outcome(audit_logger, request, result)
    return result


def _log_outcome(audit_logger: AuditLogger, request: Request, result: AuthResult) -> None:
    ok = result is AuthResult.OK
    audit_logger.log(AuditEvent(
        event_type=AuditEventType.AUTH_SUCCESS if ok else AuditEventType.AUTH_FAILURE,
        source_ip=request.client.host if request.client else None,
        action=f"{request.method} {request.url.path}",
        result="success" if ok else "failure",
        risk_level=RiskLevel.INFO if ok else RiskLevel.HIGH,
        details=None if ok else {
            "reason": "missing_token" if result is AuthResult.UNAUTHORIZED else "invalid_token",
        },
    ))
