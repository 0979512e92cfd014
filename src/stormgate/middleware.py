# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/stormgate

"""
Request stages installed ahead of the dispatcher: url-encoded body parsing and CSRF validation.
"""

import re
import secrets
from typing import Any
from urllib.parse import parse_qsl

from starlette.datastructures import Headers
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from stormgate.config import DEFAULT_BODY_LIMIT
from stormgate.utils.logger import logger

BODY_SCOPE_KEY = "stormgate.body"
CSRF_SCOPE_KEY = "stormgate.csrf_token"
CSRF_SESSION_KEY = "csrf_token"
CSRF_FORM_FIELD = "_csrf"
CSRF_HEADERS = ("x-csrf-token", "x-xsrf-token")

STATE_CHANGING_METHODS = {"POST", "PUT", "PATCH", "DELETE"}
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"

# Nested keys deeper than this stay literal in the last segment
MAX_DEPTH = 5

_KEY_RE = re.compile(r"^([^\[\]]+)((?:\[[^\[\]]*\])*)$")
_SUBKEY_RE = re.compile(r"\[([^\[\]]*)\]")


def _split_key(key: str) -> list[str]:
    match = _KEY_RE.match(key)
    if not match:
        return [key]
    parts = [match.group(1), *_SUBKEY_RE.findall(match.group(2))]
    if len(parts) > MAX_DEPTH + 1:
        head = parts[: MAX_DEPTH + 1]
        head[-1] += "".join(f"[{part}]" for part in parts[MAX_DEPTH + 1 :])
        return head
    return parts


def _assign(container: dict[str, Any] | list[Any], path: list[str], value: str) -> None:
    for index, part in enumerate(path):
        last = index == len(path) - 1

        if isinstance(container, list):
            # "[]" segment: append a new element
            if last:
                container.append(value)
                return
            child: Any = [] if path[index + 1] == "" else {}
            container.append(child)
            container = child
            continue

        if last:
            existing = container.get(part)
            if existing is None:
                container[part] = value
            elif isinstance(existing, list):
                existing.append(value)
            elif isinstance(existing, dict):
                existing[""] = value
            else:
                container[part] = [existing, value]
            return

        wants_list = path[index + 1] == ""
        child = container.get(part)
        if wants_list and not isinstance(child, list):
            child = [] if child is None else [child]
            container[part] = child
        elif not wants_list and not isinstance(child, dict):
            child = {}
            container[part] = child
        container = child


def parse_urlencoded(body: str) -> dict[str, Any]:
    """
    Parses an `application/x-www-form-urlencoded` body with nested key support.

    `user[name]=a` becomes `{"user": {"name": "a"}}`, `tags[]=a&tags[]=b` becomes
    `{"tags": ["a", "b"]}` and repeated plain keys collect into a list. Numeric
    indices (`a[0]`) are kept as dict keys.

    Args:
        body: The decoded request body.

    Returns:
        dict[str, Any]: The parsed form.
    """
    result: dict[str, Any] = {}
    for key, value in parse_qsl(body, keep_blank_values=True):
        _assign(result, _split_key(key), value)
    return result


def get_form_body(request: Request) -> dict[str, Any]:
    """Returns the body parsed by `FormBodyMiddleware`, or an empty mapping."""
    body = request.scope.get(BODY_SCOPE_KEY)
    return body if isinstance(body, dict) else {}


class FormBodyMiddleware:
    """
    Parses url-encoded request bodies into `scope["stormgate.body"]`.

    The raw body is replayed to the downstream application so `request.form()` keeps working.
    Bodies larger than `limit` bytes are answered with 413.
    """

    def __init__(self, app: ASGIApp, limit: int = DEFAULT_BODY_LIMIT) -> None:
        self.app = app
        self.limit = limit

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        scope[BODY_SCOPE_KEY] = {}
        headers = Headers(scope=scope)
        media_type, _, params = headers.get("content-type", "").partition(";")
        if media_type.strip().lower() != FORM_CONTENT_TYPE:
            await self.app(scope, receive, send)
            return

        declared = headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > self.limit:
            await PlainTextResponse("Request body too large", status_code=413)(scope, receive, send)
            return

        body = b""
        more_body = True
        while more_body:
            message = await receive()
            if message["type"] == "http.disconnect":
                return
            body += message.get("body", b"")
            if len(body) > self.limit:
                await PlainTextResponse("Request body too large", status_code=413)(scope, receive, send)
                return
            more_body = message.get("more_body", False)

        charset = "utf-8"
        for param in params.split(";"):
            name, _, value = param.partition("=")
            if name.strip().lower() == "charset" and value.strip():
                charset = value.strip().strip('"')

        try:
            scope[BODY_SCOPE_KEY] = parse_urlencoded(body.decode(charset))
        except (LookupError, UnicodeDecodeError) as e:
            logger.debug(f"Rejecting form body that does not decode as {charset}: {e}")
            await PlainTextResponse("Malformed request body", status_code=400)(scope, receive, send)
            return

        replayed = False

        async def replay() -> Message:
            nonlocal replayed
            if not replayed:
                replayed = True
                return {"type": "http.request", "body": body, "more_body": False}
            return await receive()

        await self.app(scope, replay, send)


def get_csrf_token(request: Request) -> str | None:
    """Returns the CSRF token issued for this request's session, if the CSRF stage is installed."""
    return request.scope.get(CSRF_SCOPE_KEY)


class CSRFMiddleware(BaseHTTPMiddleware):
    """
    Enforces a per-session CSRF token on state-changing requests.

    The token lives in the session and must come back in the `_csrf` form field or in an
    `X-CSRF-Token` / `X-XSRF-Token` header. Requires the session stage to run first.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        token = request.session.get(CSRF_SESSION_KEY)
        if not isinstance(token, str) or not token:
            token = secrets.token_urlsafe(32)
            request.session[CSRF_SESSION_KEY] = token
        request.scope[CSRF_SCOPE_KEY] = token

        if request.method.upper() in STATE_CHANGING_METHODS:
            submitted = get_form_body(request).get(CSRF_FORM_FIELD)
            if not isinstance(submitted, str) or not submitted:
                submitted = next((request.headers[name] for name in CSRF_HEADERS if request.headers.get(name)), None)

            if not submitted or not secrets.compare_digest(submitted.encode(), token.encode()):
                logger.warning(f"CSRF token missing or invalid for {request.method} {request.url.path}")
                return JSONResponse(status_code=403, content={"detail": "CSRF token missing or invalid"})

        return await call_next(request)
