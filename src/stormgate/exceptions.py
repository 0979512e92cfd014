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
Custom exceptions for the stormgate package.
"""

from typing import Any


class StormgateError(Exception):
    """Base exception for all stormgate errors."""


class ConfigurationError(StormgateError):
    """
    Raised when the resolved settings are missing a required combination.

    Attributes:
        problems: Every problem found by `check_settings`, in check order.
    """

    def __init__(self, problems: list[str]) -> None:
        self.problems = list(problems)
        super().__init__("Invalid stormgate configuration: " + "; ".join(self.problems))


class StartupError(StormgateError):
    """Raised when a startup step fails. Startup errors are fatal."""


class ApiKeyLoadError(StartupError):
    """Raised when the API key file is missing, unreadable or incomplete."""


class ApplicationNotFoundError(StartupError):
    """Raised when the configured application cannot be fetched from the provider."""


class ProviderError(StormgateError):
    """Raised when the identity provider cannot be reached or returns an unexpected payload."""


class ResourceError(ProviderError):
    """
    Structured error returned by the identity provider.

    Attributes:
        status (int): HTTP status of the provider response.
        code (int | None): Provider specific error code.
        message (str): User facing message.
        developer_message (str | None): Diagnostic message intended for developers.
        more_info (str | None): Link to the provider's documentation for this error.
    """

    def __init__(
        self,
        status: int,
        message: str,
        code: int | None = None,
        developer_message: str | None = None,
        more_info: str | None = None,
    ) -> None:
        self.status = status
        self.code = code
        self.message = message
        self.developer_message = developer_message
        self.more_info = more_info
        super().__init__(message)

    @classmethod
    def from_body(cls, status: int, body: Any) -> "ResourceError":
        """Builds the error from a provider JSON error body, tolerating missing fields."""
        if not isinstance(body, dict):
            body = {}
        code = body.get("code")
        return cls(
            status=status,
            message=str(body.get("message") or f"Provider request failed with HTTP {status}"),
            code=code if isinstance(code, int) else None,
            developer_message=body.get("developerMessage"),
            more_info=body.get("moreInfo"),
        )
