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
Boot sequence: validate settings, build the provider client, resolve the application.
"""

from dataclasses import dataclass
from enum import StrEnum

import anyio
import httpx
import starlette
from opentelemetry import trace

from stormgate.config import StormgateSettings, check_settings
from stormgate.exceptions import (
    ApplicationNotFoundError,
    ConfigurationError,
    ProviderError,
    StartupError,
)
from stormgate.models import ApiKey
from stormgate.provider import Application, Client, load_api_key
from stormgate.utils.logger import logger

tracer = trace.get_tracer(__name__)


class StartupState(StrEnum):
    UNCONFIGURED = "unconfigured"
    VALIDATED = "validated"
    CLIENT_READY = "client_ready"
    APPLICATION_READY = "application_ready"
    FAILED = "failed"


@dataclass(frozen=True)
class BootContext:
    """
    Everything the request path needs, produced once the application is resolved.

    Shared read-only by the dispatcher, controllers and guards for the process lifetime.
    """

    settings: StormgateSettings
    client: Client
    application: Application


def build_user_agent() -> str:
    """Returns the User-Agent sent to the provider: this package's version plus the host framework's."""
    from stormgate import __version__

    return f"stormgate/{__version__} starlette/{starlette.__version__}"


async def init_client(settings: StormgateSettings, http_client: httpx.AsyncClient | None = None) -> Client:
    """
    Builds the provider client from exactly one credential source.

    Inline `api_key_id` / `api_key_secret` win; otherwise `api_key_file` is read.

    Args:
        settings: Validated settings.
        http_client: External async client to use instead of an internal one (optional).

    Returns:
        Client: The provider client.

    Raises:
        ApiKeyLoadError: If the key file cannot be loaded.
        ConfigurationError: If neither credential source is configured.
    """
    if settings.has_inline_api_key:
        assert settings.api_key_id is not None and settings.api_key_secret is not None
        api_key = ApiKey(id=settings.api_key_id, secret=settings.api_key_secret)
        source = "inline settings"
    elif settings.api_key_file:
        api_key = await load_api_key(settings.api_key_file)
        source = settings.api_key_file
    else:
        raise ConfigurationError(["API credentials are required: set api_key_id and api_key_secret, or api_key_file"])

    logger.info(f"Using provider API key {api_key.id} from {source}")
    return Client(
        api_key=api_key,
        user_agent=build_user_agent(),
        base_url=settings.base_url,
        timeout=settings.http_timeout,
        http_client=http_client,
    )


async def init_application(client: Client, href: str) -> Application:
    """
    Fetches the configured application once. There is no retry.

    Raises:
        ApplicationNotFoundError: If the provider cannot return the application for any reason.
    """
    try:
        application = await client.get_application(href)
    except ProviderError as e:
        raise ApplicationNotFoundError(f"Couldn't find provider application {href}: {e}") from e

    logger.info(f"Resolved provider application {application.name!r} ({application.href})")
    return application


class StartupSequencer:
    """
    Runs the boot steps strictly in order, each gated on the previous one succeeding.

    States move UNCONFIGURED -> VALIDATED -> CLIENT_READY -> APPLICATION_READY, or to FAILED
    on the first error, which is re-raised. A failed sequence is not retried.
    """

    def __init__(self, settings: StormgateSettings, http_client: httpx.AsyncClient | None = None) -> None:
        self.settings = settings
        self.state = StartupState.UNCONFIGURED
        self.client: Client | None = None
        self.application: Application | None = None
        self.context: BootContext | None = None
        self._http_client = http_client
        self._lock: anyio.Lock | None = None

    @property
    def ready(self) -> bool:
        return self.state is StartupState.APPLICATION_READY

    def validate(self) -> None:
        """
        Runs the settings check. Synchronous, no I/O.

        Raises:
            ConfigurationError: If any required setting combination is missing.
        """
        with tracer.start_as_current_span("stormgate.startup.validate"):
            problems = check_settings(self.settings)
            if problems:
                self.state = StartupState.FAILED
                for problem in problems:
                    logger.error(f"Configuration problem: {problem}")
                raise ConfigurationError(problems)
            if self.state is StartupState.UNCONFIGURED:
                self.state = StartupState.VALIDATED

    async def run(self) -> BootContext:
        """
        Runs (or finishes) the boot sequence.

        Concurrent callers wait for the same run. Calling again after success returns the same context.

        Returns:
            BootContext: The shared context for the request path.

        Raises:
            ConfigurationError: Settings are incomplete; no network call was made.
            ApiKeyLoadError: The key file could not be loaded.
            ApplicationNotFoundError: The application could not be fetched.
            StartupError: A previous run already failed.
        """
        if self._lock is None:
            self._lock = anyio.Lock()

        async with self._lock:
            if self.context is not None:
                return self.context
            if self.state is StartupState.FAILED:
                raise StartupError("stormgate startup already failed; restart the process")

            try:
                if self.state is StartupState.UNCONFIGURED:
                    self.validate()

                with tracer.start_as_current_span("stormgate.startup.client"):
                    self.client = await init_client(self.settings, self._http_client)
                self.state = StartupState.CLIENT_READY

                assert self.settings.application is not None
                with tracer.start_as_current_span("stormgate.startup.application"):
                    self.application = await init_application(self.client, self.settings.application)
                self.state = StartupState.APPLICATION_READY
            except Exception:
                self.state = StartupState.FAILED
                if self.client is not None:
                    await self.client.aclose()
                raise

            self.context = BootContext(settings=self.settings, client=self.client, application=self.application)
            logger.info("stormgate startup complete")
            return self.context

    async def aclose(self) -> None:
        """Closes the provider client at process shutdown."""
        if self.client is not None:
            await self.client.aclose()
