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
Stormgate component wiring the middleware stack and the boot sequence into a Starlette app.
"""

from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from typing import Any

import httpx
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.sessions import SessionMiddleware

from stormgate.config import StormgateSettings, init_settings
from stormgate.dispatcher import DispatchMiddleware
from stormgate.middleware import CSRFMiddleware, FormBodyMiddleware
from stormgate.startup import BootContext, StartupSequencer, StartupState
from stormgate.utils.logger import logger


class Stormgate:
    """
    Owns the boot sequence and the request stages for one host application.

    Attributes:
        settings (StormgateSettings): The resolved settings.
        sequencer (StartupSequencer): The boot sequence shared with the dispatcher.
    """

    def __init__(self, settings: StormgateSettings, http_client: httpx.AsyncClient | None = None) -> None:
        """
        Initialize the Stormgate.

        Args:
            settings: Resolved settings. They are checked by `init_app` and `startup`.
            http_client: External async client for provider calls (optional).
        """
        self.settings = settings
        self.sequencer = StartupSequencer(settings, http_client=http_client)

    @property
    def state(self) -> StartupState:
        return self.sequencer.state

    @property
    def ready(self) -> bool:
        return self.sequencer.ready

    @property
    def context(self) -> BootContext | None:
        return self.sequencer.context

    def _stack(self) -> list[tuple[type, dict[str, Any]]]:
        settings = self.settings
        secret = settings.secret_key.get_secret_value() if settings.secret_key else ""

        stack: list[tuple[type, dict[str, Any]]] = [
            (
                SessionMiddleware,
                {
                    "secret_key": secret,
                    "session_cookie": settings.session_cookie,
                    "max_age": settings.session_duration,
                    "https_only": settings.enable_https,
                    "same_site": "lax",
                },
            ),
            (FormBodyMiddleware, {"limit": settings.body_limit}),
        ]
        if settings.use_csrf:
            stack.append((CSRFMiddleware, {}))
        stack.append((DispatchMiddleware, {"sequencer": self.sequencer}))
        return stack

    def middleware(self) -> list[Middleware]:
        """
        Returns the request stages, outermost first: session, body parsing, CSRF (only when
        `use_csrf` is set) and dispatch. Suitable for `Starlette(middleware=...)`.
        """
        return [Middleware(cls, **options) for cls, options in self._stack()]

    def init_app(self, app: Starlette) -> None:
        """
        Installs the request stages on `app` and hooks the boot sequence into its lifespan.

        The boot sequence completes before the app's own lifespan starts; a failure aborts
        server startup. The provider client is closed when the lifespan ends.

        Raises:
            ConfigurationError: If the settings are incomplete.
        """
        self.sequencer.validate()

        # add_middleware prepends, so install innermost first
        for cls, options in reversed(self._stack()):
            app.add_middleware(cls, **options)

        original_lifespan = app.router.lifespan_context

        @asynccontextmanager
        async def lifespan(host: Any) -> AsyncIterator[Any]:
            await self.startup()
            try:
                async with original_lifespan(host) as state:
                    yield state
            finally:
                await self.shutdown()

        app.router.lifespan_context = lifespan
        app.state.stormgate = self
        logger.debug(f"stormgate installed (csrf={'on' if self.settings.use_csrf else 'off'})")

    async def startup(self) -> BootContext:
        """Runs the boot sequence. For hosts that manage their own lifespan."""
        return await self.sequencer.run()

    async def shutdown(self) -> None:
        await self.sequencer.aclose()


def init(
    app: Starlette,
    options: Mapping[str, Any] | None = None,
    http_client: httpx.AsyncClient | None = None,
    **kwargs: Any,
) -> Stormgate:
    """
    Resolves settings, checks them and installs stormgate on a Starlette app.

    Args:
        app: The host application.
        options: Settings keyed by `StormgateSettings` field name; unknown keys are ignored.
        http_client: External async client for provider calls (optional).
        **kwargs: More settings, taking priority over `options`.

    Returns:
        Stormgate: The installed instance.

    Raises:
        ConfigurationError: If the settings are incomplete. No network call has been made.
    """
    settings = init_settings({**(options or {}), **kwargs})
    gate = Stormgate(settings, http_client=http_client)
    gate.init_app(app)
    return gate
