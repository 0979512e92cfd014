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
Session and current-user helpers shared by the dispatcher, controllers and guards.
"""

from urllib.parse import urlsplit

from starlette.requests import Request

from stormgate.async_context import set_current_user
from stormgate.exceptions import ResourceError, StormgateError
from stormgate.models import Account
from stormgate.startup import BootContext
from stormgate.utils.logger import logger

SESSION_ACCOUNT_KEY = "account_href"
CONTEXT_SCOPE_KEY = "stormgate"


def get_boot_context(request: Request) -> BootContext:
    """
    Returns the context the dispatcher attached to this request.

    Raises:
        StormgateError: If the request did not pass through the stormgate dispatcher.
    """
    context = request.scope.get(CONTEXT_SCOPE_KEY)
    if not isinstance(context, BootContext):
        raise StormgateError("Request did not pass through the stormgate dispatcher; install it with stormgate.init()")
    return context


async def get_user(request: Request, context: BootContext) -> Account | None:
    """
    Resolves the current user from the session and publishes it on the request.

    The account is written to `request.state.user` and to the current-user context variable.
    A session pointing at an account the provider no longer returns is treated as anonymous
    and the stale reference is dropped.

    Args:
        request: The incoming request (the session stage must have run).
        context: The boot context.

    Returns:
        Account | None: The authenticated account, or None.

    Raises:
        ProviderError: If the provider cannot be reached.
    """
    user: Account | None = None
    href = request.session.get(SESSION_ACCOUNT_KEY)

    if isinstance(href, str) and href:
        try:
            user = await context.client.get_account(href)
        except ResourceError as e:
            logger.warning(f"Dropping session for account {href}: provider answered {e.status}")
            request.session.pop(SESSION_ACCOUNT_KEY, None)

    request.state.user = user
    set_current_user(user)
    return user


def login_user(request: Request, account: Account) -> None:
    """Stores the account reference in the session and makes it the current user."""
    request.session[SESSION_ACCOUNT_KEY] = account.href
    request.state.user = account
    set_current_user(account)
    logger.info(f"Account {account.href} logged in")


def logout_user(request: Request) -> None:
    """Clears the whole session and the current user."""
    href = request.session.get(SESSION_ACCOUNT_KEY)
    request.session.clear()
    request.state.user = None
    set_current_user(None)
    if href:
        logger.info(f"Account {href} logged out")


def safe_redirect_target(target: str | None, default: str) -> str:
    """
    Returns `target` if it is a local absolute path, else `default`.

    Rejects scheme or host bearing values and protocol-relative paths (`//evil.example`).
    """
    if not target:
        return default
    parts = urlsplit(target)
    if parts.scheme or parts.netloc or not target.startswith("/") or target.startswith("//") or "\\" in target:
        return default
    return target
