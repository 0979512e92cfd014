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
Async Context Management for the request-scoped current user.
"""

from contextvars import ContextVar

from stormgate.models import Account

_current_user: ContextVar[Account | None] = ContextVar("stormgate_current_user", default=None)


def get_current_user() -> Account | None:
    """
    Retrieve the account resolved for the running request.

    Returns:
        Account | None: The current user, or None when the request is anonymous.
    """
    return _current_user.get()


def set_current_user(user: Account | None) -> None:
    """
    Set the current user for the running request.

    Args:
        user: The resolved account, or None for an anonymous request.
    """
    _current_user.set(user)


def clear_current_user() -> None:
    """
    Clear the current user (reset to None).
    """
    _current_user.set(None)
