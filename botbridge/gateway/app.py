"""FastAPI application exposing bot actions over HTTP.

Any path is an action: ``/`` reads ``action`` and ``params`` from the
request, every other path names the action itself (``/send_msg``).
Responses are always the executor's JSON document with status 200 once
the request has been parsed and authenticated.
"""

from __future__ import annotations

import json
import logging
import re
from urllib.parse import parse_qs

from fastapi import FastAPI, Request, Response
from fastapi.exception_handlers import http_exception_handler
from starlette.exceptions import HTTPException as StarletteHTTPException

from botbridge.audit.logger import AuditLogger
from botbridge.gateway.auth import AuthResult, check_auth
from botbridge.gateway.caller import ActionCaller
from botbridge.gateway.params import RequestContext, loads_strict
from botbridge.models import AuditEvent, AuditEventType, RiskLevel

logger = logging.getLogger(__name__)

JSON_MEDIA_TYPE = "application/json; charset=utf-8"
ASYNC_SUFFIX = "_async"

_ROUTED_METHODS = ["GET", "POST"]

_BAD_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")


class MalformedRequestError(Exception):
    """Raised when a request body cannot be decoded."""


def _parse_form(body: bytes) -> dict[str, list[str]]:
    try:
        text = body.decode()
    except UnicodeDecodeError as exc:
        raise MalformedRequestError("form body is not valid UTF-8") from exc
    if _BAD_ESCAPE.search(text):
        raise MalformedRequestError("invalid percent escape in form body")
    return parse_qs(text, keep_blank_values=True)


async def build_context(request: Request) -> RequestContext:
    """Parse the body (POST only) and query string of ``request``."""
    json_body = None
    form = None
    if request.method == "POST":
        content_type = request.headers.get("content-type", "")
        if "application/json" in content_type:
            body = await request.body()
            try:
                json_body = loads_strict(body)
            except ValueError as exc:
                raise MalformedRequestError("invalid JSON body") from exc
        if "application/x-www-form-urlencoded" in content_type:
            form = _parse_form(await request.body())
    query = parse_qs(request.url.query, keep_blank_values=True)
    return RequestContext(json_body=json_body, form=form, query=query)


def resolve_action(path: str, ctx: RequestContext) -> tuple[str, object]:
    """Return the action name and the params source to hand to the executor."""
    if path == "/":
        action = ctx.get("action").string.removesuffix(ASYNC_SUFFIX)
        return action, ctx.get("params")
    action = path.removeprefix("/").removesuffix(ASYNC_SUFFIX)
    return action, ctx


def create_app(
    caller: ActionCaller,
    access_token: str = "",
    audit_logger: AuditLogger | None = None,
) -> FastAPI:
    """Create the gateway app dispatching to ``caller``."""
    app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)

    @app.exception_handler(StarletteHTTPException)
    async def hide_method_surface(request: Request, exc: StarletteHTTPException) -> Response:
        # Any method other than GET and POST is reported as not found.
        if exc.status_code == 405:
            logger.warning("Rejected request: method %s", request.method)
            return Response(status_code=404)
        return await http_exception_handler(request, exc)

    @app.api_route("/{path:path}", methods=_ROUTED_METHODS)
    async def dispatch(request: Request, path: str) -> Response:
        client = request.client.host if request.client else None
        if request.method not in ("GET", "POST"):
            logger.warning("Rejected request from %s: method %s", client, request.method)
            return Response(status_code=404)

        try:
            ctx = await build_context(request)
        except MalformedRequestError as exc:
            logger.warning("Rejected request from %s: %s", client, exc)
            if audit_logger:
                audit_logger.log(AuditEvent(
                    event_type=AuditEventType.REQUEST_REJECTED,
                    source_ip=client,
                    action=f"{request.method} {request.url.path}",
                    result="blocked",
                    risk_level=RiskLevel.LOW,
                    details={"reason": str(exc)},
                ))
            return Response(status_code=400)

        status = check_auth(request, access_token, audit_logger)
        if status is not AuthResult.OK:
            return Response(status_code=int(status))

        action, params = resolve_action(request.url.path, ctx)
        logger.debug("Gateway received API call: %s", action)
        result = await caller.call(action, params)
        return Response(
            content=json.dumps(result, ensure_ascii=False, allow_nan=False) + "\n",
            status_code=200,
            media_type=JSON_MEDIA_TYPE,
        )

    return app
