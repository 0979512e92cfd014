# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/stormgate

import base64
import json
import os
import re
from collections.abc import Callable
from typing import Any

import httpx
import pytest
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response
from starlette.routing import Route

from stormgate import Stormgate, groups_required, init, login_required

BASE_URL = "https://api.stormpath.com/v1"
APP_HREF = f"{BASE_URL}/applications/app123"
ACCOUNT_HREF = f"{BASE_URL}/accounts/acc123"
NEW_ACCOUNT_HREF = f"{BASE_URL}/accounts/new456"

LOGIN = "alice@example.com"
PASSWORD = "CorrectHorse1"


def error_body(status: int, code: int, message: str) -> dict[str, Any]:
    return {
        "status": status,
        "code": code,
        "message": message,
        "developerMessage": f"dev: {message}",
        "moreInfo": f"https://docs.stormpath.com/errors/{code}",
    }


class FakeProvider:
    """
    In-memory stand-in for the provider REST API, served through httpx.MockTransport.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []
        self.requests: list[httpx.Request] = []
        self.application_status = 200
        self.account_lookup_status = 200
        self.new_account_status = "ENABLED"
        self.groups = ["admins", "staff"]
        self.offline = False

    def account_json(self, href: str = ACCOUNT_HREF, status: str = "ENABLED") -> dict[str, Any]:
        return {
            "href": href,
            "username": "alice",
            "email": LOGIN,
            "givenName": "Alice",
            "surname": "Smith",
            "fullName": "Alice Smith",
            "status": status,
            "groups": {
                "href": f"{href}/groups",
                "items": [{"href": f"{BASE_URL}/groups/{name}", "name": name} for name in self.groups],
            },
        }

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        self.calls.append((request.method, path))

        if self.offline:
            raise httpx.ConnectError("connection refused", request=request)

        if request.method == "GET" and path == "/v1/applications/app123":
            if self.application_status != 200:
                return httpx.Response(
                    self.application_status,
                    json=error_body(self.application_status, 404, "The requested resource does not exist."),
                )
            return httpx.Response(
                200,
                json={"href": APP_HREF, "name": "My App", "status": "ENABLED", "description": "test"},
            )

        if request.method == "POST" and path == "/v1/applications/app123/loginAttempts":
            payload = json.loads(request.content)
            login, _, password = base64.b64decode(payload["value"]).decode().partition(":")
            if login == LOGIN and password == PASSWORD:
                return httpx.Response(200, json={"account": {"href": ACCOUNT_HREF}})
            return httpx.Response(400, json=error_body(400, 7100, "Invalid username or password."))

        if request.method == "POST" and path == "/v1/applications/app123/accounts":
            payload = json.loads(request.content)
            if payload["email"] == LOGIN:
                return httpx.Response(
                    409, json=error_body(409, 2001, "Account with that email already exists.")
                )
            body = self.account_json(NEW_ACCOUNT_HREF, self.new_account_status)
            body.update(email=payload["email"], givenName=payload["givenName"], surname=payload["surname"])
            return httpx.Response(201, json=body)

        if request.method == "GET" and path in ("/v1/accounts/acc123", "/v1/accounts/new456"):
            if self.account_lookup_status != 200:
                return httpx.Response(
                    self.account_lookup_status,
                    json=error_body(self.account_lookup_status, 404, "The requested resource does not exist."),
                )
            href = ACCOUNT_HREF if path.endswith("acc123") else NEW_ACCOUNT_HREF
            return httpx.Response(200, json=self.account_json(href))

        return httpx.Response(404, json=error_body(404, 404, "The requested resource does not exist."))


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keeps STORMGATE_* variables from the developer's shell out of the tests."""
    for name in list(os.environ):
        if name.upper().startswith("STORMGATE_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def http_client(fake_provider: FakeProvider) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(fake_provider.handler))


@pytest.fixture
def options() -> dict[str, Any]:
    return {
        "api_key_id": "key-id",
        "api_key_secret": "key-secret",
        "application": APP_HREF,
        "secret_key": "test-session-secret",
    }


async def home(request: Request) -> Response:
    return PlainTextResponse("home")


@login_required
async def dashboard(request: Request) -> Response:
    return PlainTextResponse(f"hello {request.state.user.given_name}")


@groups_required(["admins"])
async def admin(request: Request) -> Response:
    return PlainTextResponse("admin area")


@groups_required(["admins", "billing"])
async def admins_and_billing(request: Request) -> Response:
    return PlainTextResponse("admins and billing")


@groups_required(["billing", "staff"], require_all=False)
async def billing_or_staff(request: Request) -> Response:
    return PlainTextResponse("billing or staff")


async def echo_form(request: Request) -> Response:
    form = await request.form()
    return JSONResponse({key: value for key, value in form.items()})


HOST_ROUTES = [
    Route("/", home),
    Route("/other", home),
    Route("/dashboard", dashboard),
    Route("/admin", admin),
    Route("/admins-and-billing", admins_and_billing),
    Route("/billing-or-staff", billing_or_staff),
    Route("/echo", echo_form, methods=["POST"]),
]


@pytest.fixture
def make_app(
    options: dict[str, Any], http_client: httpx.AsyncClient
) -> Callable[..., tuple[Starlette, Stormgate]]:
    """Builds a host app with stormgate installed; keyword arguments override settings."""

    def _make(**overrides: Any) -> tuple[Starlette, Stormgate]:
        app = Starlette(routes=list(HOST_ROUTES))
        gate = init(app, {**options, **overrides}, http_client=http_client)
        return app, gate

    return _make


CSRF_RE = re.compile(r'name="_csrf" value="([^"]+)"')


def csrf_token_from(html: str) -> str:
    match = CSRF_RE.search(html)
    assert match, "page has no CSRF field"
    return match.group(1)

