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
Per-request dispatch to the registration, login and logout controllers.
"""

from collections.abc import Awaitable, Callable, Sequence
from typing import NamedTuple

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response
from starlette.types import ASGIApp

from stormgate import controllers
from stormgate.async_context import clear_current_user
from stormgate.config import StormgateSettings
from stormgate.helpers import CONTEXT_SCOPE_KEY, get_user
from stormgate.startup import BootContext, StartupSequencer
from stormgate.utils.logger import logger

Handler = Callable[[Request, BootContext], Awaitable[Response]]

RETRY_AFTER_SECONDS = "1"


class Route(NamedTuple):
    prefix: str
    enabled: bool
    handler: Handler


def build_routes(settings: StormgateSettings) -> list[Route]:
    """
    Returns the dispatch table in priority order: registration, login, logout.
    """
    return [
        Route(settings.registration_url, settings.enable_registration, controllers.register),
        Route(settings.login_url, settings.enable_login, controllers.login),
        Route(settings.logout_url, settings.enable_logout, controllers.logout),
    ]


def match_route(routes: Sequence[Route], path: str) -> Route | None:
    """
    Returns the first enabled route whose prefix the path starts with.

    This is a plain string prefix test, so `/login` also matches `/loginXYZ`.
    """
    for route in routes:
        if route.enabled and path.startswith(route.prefix):
            return route
    return None


class DispatchMiddleware(BaseHTTPMiddleware):
    """
    Resolves the current user, then hands owned routes to their controller.

    Requests that match no enabled route continue down the host application's chain.
    Until startup reaches APPLICATION_READY every request is answered with 503.
    """

    def __init__(
        self,
        app: ASGIApp,
        sequencer: StartupSequencer,
        routes: Sequence[Route] | None = None,
    ) -> None:
        super().__init__(app)
        self.sequencer = sequencer
        self.routes = list(routes) if routes is not None else build_routes(sequencer.settings)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        context = self.sequencer.context
        if context is None:
            logger.warning(f"Rejecting {request.method} {request.url.path}: startup is {self.sequencer.state.value}")
            return PlainTextResponse(
                "Service Unavailable",
                status_code=503,
                headers={"Retry-After": RETRY_AFTER_SECONDS},
            )

        request.scope[CONTEXT_SCOPE_KEY] = context
        try:
            await get_user(request, context)

            route = match_route(self.routes, request.url.path)
            if route is not None:
                return await route.handler(request, context)
            return await call_next(request)
        finally:
            clear_current_user()
