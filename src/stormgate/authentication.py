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
Route guards for the host application's own endpoints.

Usage:

    @login_required
    async def dashboard(request: Request) -> Response: ...

    @groups_required(["admins", "editors"], require_all=False)
    async def admin(request: Request) -> Response: ...

Guarded routes must sit behind the stormgate dispatcher, which resolves the current user.
"""

import functools
from collections.abc import Awaitable, Callable, Iterable
from typing import Any
from urllib.parse import urlencode

from starlette.requests import Request
from starlette.responses import HTMLResponse, RedirectResponse, Response

from stormgate.helpers import get_boot_context
from stormgate.models import Account
from stormgate.utils.logger import logger
from stormgate.views import render_forbidden

Endpoint = Callable[..., Awaitable[Response]]


def _login_redirect(request: Request, login_url: str) -> Response:
    here = request.url.path
    if request.url.query:
        here = f"{here}?{request.url.query}"
    return RedirectResponse(url=f"{login_url}?{urlencode({'next': here})}", status_code=302)


def _current_user(request: Request) -> Account | None:
    user = getattr(request.state, "user", None)
    return user if isinstance(user, Account) else None


def login_required(endpoint: Endpoint) -> Endpoint:
    """
    Only lets authenticated users through; anonymous visitors are redirected to the login page.

    Raises:
        StormgateError: At request time, if the route is not behind the stormgate dispatcher.
    """

    @functools.wraps(endpoint)
    async def guarded(request: Request, *args: Any, **kwargs: Any) -> Response:
        context = get_boot_context(request)
        if _current_user(request) is None:
            return _login_redirect(request, context.settings.login_url)
        return await endpoint(request, *args, **kwargs)

    return guarded


def groups_required(groups: Iterable[str], require_all: bool = True) -> Callable[[Endpoint], Endpoint]:
    """
    Only lets through users that belong to the given groups.

    Anonymous visitors are redirected to the login page; authenticated users lacking the
    membership get a 403 page.

    Args:
        groups: Group names, fixed when the route is declared.
        require_all: When True (default) the user must be in every group, otherwise in at least one.

    Returns:
        A decorator for async Starlette endpoints.
    """
    required = tuple(groups)

    def decorator(endpoint: Endpoint) -> Endpoint:
        @functools.wraps(endpoint)
        async def guarded(request: Request, *args: Any, **kwargs: Any) -> Response:
            context = get_boot_context(request)
            user = _current_user(request)
            if user is None:
                return _login_redirect(request, context.settings.login_url)
            if not user.in_groups(required, require_all=require_all):
                logger.info(f"Account {user.href} denied {request.url.path}: requires groups {list(required)}")
                return HTMLResponse(render_forbidden(), status_code=403)
            return await endpoint(request, *args, **kwargs)

        return guarded

    return decorator
