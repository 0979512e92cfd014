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
Built-in controllers for the registration, login and logout routes.
"""

from pydantic import ValidationError
from starlette.requests import Request
from starlette.responses import HTMLResponse, RedirectResponse, Response

from stormgate.exceptions import ResourceError
from stormgate.forms import LoginForm, RegistrationForm, describe_errors, form_values
from stormgate.helpers import login_user, logout_user, safe_redirect_target
from stormgate.middleware import get_csrf_token, get_form_body
from stormgate.models import ResourceStatus
from stormgate.startup import BootContext
from stormgate.utils.logger import logger
from stormgate.views import render_login, render_register, render_verify_email

READ_METHODS = {"GET", "HEAD"}
FORM_ALLOW = "GET, HEAD, POST"

REGISTRATION_FIELDS = ("given_name", "surname", "email", "password", "password_confirm")
LOGIN_FIELDS = ("login", "password")


def _method_not_allowed(allow: str) -> Response:
    return Response("Method Not Allowed", status_code=405, headers={"Allow": allow})


def _action(request: Request) -> str:
    query = request.url.query
    return f"{request.url.path}?{query}" if query else request.url.path


def _redirect(url: str) -> RedirectResponse:
    return RedirectResponse(url=url, status_code=302)


async def register(request: Request, context: BootContext) -> Response:
    """
    Renders the registration form and creates accounts.

    Enabled accounts are logged in straight away; accounts awaiting email verification
    get a confirmation page instead.
    """
    settings = context.settings
    method = request.method.upper()

    if method not in READ_METHODS and method != "POST":
        return _method_not_allowed(FORM_ALLOW)
    if getattr(request.state, "user", None) is not None:
        return _redirect(settings.redirect_url)

    csrf_token = get_csrf_token(request)
    if method in READ_METHODS:
        return HTMLResponse(render_register(_action(request), csrf_token))

    values = form_values(get_form_body(request), REGISTRATION_FIELDS)
    echoed = {name: value for name, value in values.items() if not name.startswith("password")}

    try:
        form = RegistrationForm(**values)
    except ValidationError as e:
        errors = describe_errors(e)
        return HTMLResponse(render_register(_action(request), csrf_token, echoed, errors), status_code=400)

    try:
        account = await context.application.create_account(
            given_name=form.given_name,
            surname=form.surname,
            email=str(form.email),
            password=form.password.get_secret_value(),
        )
    except ResourceError as e:
        logger.info(f"Registration rejected by provider ({e.status}, code {e.code})")
        return HTMLResponse(render_register(_action(request), csrf_token, echoed, [e.message]), status_code=400)

    logger.info(f"Registered account {account.href} with status {account.status.value}")
    if account.status is not ResourceStatus.ENABLED:
        return HTMLResponse(render_verify_email(str(form.email)))

    login_user(request, account)
    return _redirect(settings.redirect_url)


async def login(request: Request, context: BootContext) -> Response:
    """
    Renders the login form and authenticates credentials against the application.

    On success the user is sent to the `next` query parameter when it is a local path,
    otherwise to the configured redirect URL.
    """
    settings = context.settings
    method = request.method.upper()

    if method not in READ_METHODS and method != "POST":
        return _method_not_allowed(FORM_ALLOW)

    target = safe_redirect_target(request.query_params.get("next"), settings.redirect_url)
    if getattr(request.state, "user", None) is not None:
        return _redirect(target)

    csrf_token = get_csrf_token(request)
    registration_url = settings.registration_url if settings.enable_registration else None
    if method in READ_METHODS:
        return HTMLResponse(render_login(_action(request), csrf_token, registration_url=registration_url))

    values = form_values(get_form_body(request), LOGIN_FIELDS)
    try:
        form = LoginForm(**values)
    except ValidationError as e:
        page = render_login(
            _action(request), csrf_token, values.get("login", ""), describe_errors(e), registration_url
        )
        return HTMLResponse(page, status_code=400)

    try:
        account = await context.application.authenticate_account(form.login, form.password.get_secret_value())
    except ResourceError as e:
        logger.info(f"Login attempt rejected by provider ({e.status}, code {e.code})")
        page = render_login(
            _action(request), csrf_token, form.login, ["Invalid username or password."], registration_url
        )
        return HTMLResponse(page, status_code=400)

    login_user(request, account)
    return _redirect(target)


async def logout(request: Request, context: BootContext) -> Response:
    """Clears the session and sends the visitor home."""
    logout_user(request)
    return _redirect("/")
