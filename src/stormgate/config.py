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
Configuration for the stormgate package.
"""

from collections.abc import Mapping
from typing import Any

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from stormgate.utils.logger import logger

DEFAULT_BASE_URL = "https://api.stormpath.com/v1"
DEFAULT_SESSION_DURATION = 60 * 60 * 24 * 30
DEFAULT_BODY_LIMIT = 100 * 1024


class StormgateSettings(BaseSettings):
    """
    Settings for the stormgate middleware.

    Instances are frozen: they are resolved once at boot and shared read-only afterwards.

    Attributes:
        api_key_id (str | None): Inline API key id.
        api_key_secret (SecretStr | None): Inline API key secret.
        api_key_file (str | None): Path to an `apiKey.properties` file, used when no inline key is set.
        application (str | None): Href of the provider application this deployment uses.
        base_url (str): Root of the provider REST API.
        secret_key (SecretStr | None): Secret used to sign the session cookie.
        session_duration (int): Session lifetime in seconds.
        session_cookie (str): Name of the session cookie.
        enable_https (bool): Marks the session cookie `Secure`.
        use_csrf (bool): Installs the CSRF validation stage.
        enable_registration (bool): Dispatches requests under `registration_url`.
        enable_login (bool): Dispatches requests under `login_url`.
        enable_logout (bool): Dispatches requests under `logout_url`.
        registration_url (str): Registration route prefix.
        login_url (str): Login route prefix.
        logout_url (str): Logout route prefix.
        redirect_url (str): Where users land after registering or logging in.
        body_limit (int): Maximum accepted size of a url-encoded request body, in bytes.
        http_timeout (float): Timeout in seconds for provider requests.
    """

    model_config = SettingsConfigDict(
        env_prefix="STORMGATE_",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    api_key_id: str | None = None
    api_key_secret: SecretStr | None = None
    api_key_file: str | None = None
    application: str | None = None
    base_url: str = DEFAULT_BASE_URL

    secret_key: SecretStr | None = None
    session_duration: int = Field(default=DEFAULT_SESSION_DURATION, description="Session lifetime in seconds.")
    session_cookie: str = "stormgateSession"
    enable_https: bool = False
    use_csrf: bool = True

    enable_registration: bool = True
    enable_login: bool = True
    enable_logout: bool = True
    registration_url: str = "/register"
    login_url: str = "/login"
    logout_url: str = "/logout"
    redirect_url: str = "/"

    body_limit: int = DEFAULT_BODY_LIMIT
    http_timeout: float = 10.0

    @field_validator("api_key_id", "api_key_file", "application", mode="before")
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        """Treats empty strings (e.g. `STORMGATE_APPLICATION=`) as unset."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def has_inline_api_key(self) -> bool:
        return bool(self.api_key_id and self.api_key_secret and self.api_key_secret.get_secret_value())


def init_settings(options: Mapping[str, Any] | None = None) -> StormgateSettings:
    """
    Resolves settings from explicit options, the environment and defaults (in that priority).

    Unknown option keys are ignored.

    Args:
        options: User supplied options keyed by `StormgateSettings` field name.

    Returns:
        StormgateSettings: The resolved, frozen settings.
    """
    options = dict(options or {})
    known = StormgateSettings.model_fields.keys()

    unknown = sorted(key for key in options if key not in known)
    if unknown:
        logger.debug(f"Ignoring unknown stormgate options: {', '.join(unknown)}")

    return StormgateSettings(**{key: value for key, value in options.items() if key in known})


def check_settings(settings: StormgateSettings) -> list[str]:
    """
    Inspects resolved settings for missing required combinations.

    Performs no I/O and never raises; the caller decides how to fail.

    Args:
        settings: The resolved settings.

    Returns:
        list[str]: Human readable problems. An empty list means the settings are usable.
    """
    problems: list[str] = []

    if not settings.has_inline_api_key and not settings.api_key_file:
        problems.append("API credentials are required: set api_key_id and api_key_secret, or api_key_file")

    if not settings.application:
        problems.append("An application href is required: set application")

    if settings.secret_key is None or not settings.secret_key.get_secret_value():
        problems.append("A session secret is required: set secret_key")

    if settings.session_duration <= 0:
        problems.append("session_duration must be a positive number of seconds")

    for name in ("registration_url", "login_url", "logout_url"):
        value = getattr(settings, name)
        if not value.startswith("/"):
            problems.append(f"{name} must be an absolute path starting with '/' (got {value!r})")

    return problems
