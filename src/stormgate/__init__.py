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
Authentication middleware for Starlette applications backed by a hosted identity provider.
"""

__version__ = "0.1.0"

from .async_context import get_current_user
from .authentication import groups_required, login_required
from .config import StormgateSettings, check_settings, init_settings
from .exceptions import (
    ApiKeyLoadError,
    ApplicationNotFoundError,
    ConfigurationError,
    ProviderError,
    ResourceError,
    StartupError,
    StormgateError,
)
from .gate import Stormgate, init
from .models import Account, ApiKey
from .startup import BootContext, StartupState

__all__ = [
    "Account",
    "ApiKey",
    "ApiKeyLoadError",
    "ApplicationNotFoundError",
    "BootContext",
    "ConfigurationError",
    "ProviderError",
    "ResourceError",
    "StartupError",
    "StartupState",
    "Stormgate",
    "StormgateError",
    "StormgateSettings",
    "check_settings",
    "get_current_user",
    "groups_required",
    "init",
    "init_settings",
    "login_required",
]
