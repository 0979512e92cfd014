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
Minimal HTML pages rendered by the built-in controllers.
"""

import html

PAGE = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{title}</title></head>
<body>
  <h1>{title}</h1>
{body}
</body>
</html>"""


def _page(title: str, body: str) -> str:
    return PAGE.format(title=html.escape(title), body=body)


def _errors(errors: list[str]) -> str:
    if not errors:
        return ""
    items = "\n".join(f"    <li>{html.escape(error)}</li>" for error in errors)
    return f'  <ul class="errors">\n{items}\n  </ul>'


def _csrf_field(csrf_token: str | None) -> str:
    if not csrf_token:
        return ""
    return f'    <input type="hidden" name="_csrf" value="{html.escape(csrf_token)}">'


def _input(name: str, label: str, value: str = "", kind: str = "text") -> str:
    return (
        f'    <label>{html.escape(label)} '
        f'<input type="{kind}" name="{name}" value="{html.escape(value)}"></label><br>'
    )


def render_register(
    action: str,
    csrf_token: str | None,
    values: dict[str, str] | None = None,
    errors: list[str] | None = None,
) -> str:
    """Registration form. Passwords are never echoed back."""
    values = values or {}
    fields = "\n".join(
        [
            _csrf_field(csrf_token),
            _input("given_name", "First name", values.get("given_name", "")),
            _input("surname", "Last name", values.get("surname", "")),
            _input("email", "Email", values.get("email", ""), kind="email"),
            _input("password", "Password", kind="password"),
            _input("password_confirm", "Confirm password", kind="password"),
            '    <button type="submit">Create Account</button>',
        ]
    )
    body = f'{_errors(errors or [])}\n  <form method="post" action="{html.escape(action)}">\n{fields}\n  </form>'
    return _page("Create Account", body)


def render_login(
    action: str,
    csrf_token: str | None,
    login: str = "",
    errors: list[str] | None = None,
    registration_url: str | None = None,
) -> str:
    """Login form, with a link to the registration page when registration is enabled."""
    fields = "\n".join(
        [
            _csrf_field(csrf_token),
            _input("login", "Username or email", login),
            _input("password", "Password", kind="password"),
            '    <button type="submit">Log In</button>',
        ]
    )
    body = f'{_errors(errors or [])}\n  <form method="post" action="{html.escape(action)}">\n{fields}\n  </form>'
    if registration_url:
        body += f'\n  <p><a href="{html.escape(registration_url)}">Create an account</a></p>'
    return _page("Log In", body)


def render_verify_email(email: str) -> str:
    body = (
        f"  <p>Your account has been created. We sent a verification link to "
        f"<strong>{html.escape(email)}</strong>; follow it before logging in.</p>"
    )
    return _page("Check Your Email", body)


def render_forbidden() -> str:
    return _page("Forbidden", "  <p>You do not have sufficient permissions to access this page.</p>")
