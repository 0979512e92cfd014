# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/stormgate

from collections.abc import Callable, Iterator

import pytest
from conftest import LOGIN, PASSWORD, FakeProvider, csrf_token_from
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response
from starlette.routing import Route
from starlette.testclient import TestClient

from stormgate.authentication import groups_required, login_required
from stormgate.exceptions import StormgateError
from stormgate.gate import Stormgate


@pytest.fixture
def started(make_app: Callable[..., tuple[Starlette, Stormgate]]) -> Iterator[TestClient]:
    app, _ = make_app()
    with TestClient(app) as client:
        yield client


def log_in(client: TestClient) -> None:
    token = csrf_token_from(client.get("/login").text)
    response = client.post(
        "/login", data={"login": LOGIN, "password": PASSWORD, "_csrf": token}, follow_redirects=False
    )
    assert response.status_code == 302


def test_login_required_redirects_anonymous(started: TestClient) -> None:
    response = started.get("/dashboard", follow_redirects=False)

    assert response.status_code == 302
    assert response.headers["location"] == "/login?next=%2Fdashboard"


def test_login_required_keeps_query_in_next(started: TestClient) -> None:
    response = started.get("/dashboard?tab=2", follow_redirects=False)
    assert response.headers["location"] == "/login?next=%2Fdashboard%3Ftab%3D2"


def test_login_required_uses_configured_login_url(make_app: Callable[..., tuple[Starlette, Stormgate]]) -> None:
    app, _ = make_app(login_url="/signin")
    with TestClient(app) as client:
        response = client.get("/dashboard", follow_redirects=False)
    assert response.headers["location"].startswith("/signin?next=")


def test_login_required_then_back(started: TestClient) -> None:
    """The redirect round trip lands the user back on the guarded page."""
    redirect = started.get("/dashboard", follow_redirects=False).headers["location"]
    token = csrf_token_from(started.get(redirect).text)
    response = started.post(
        redirect, data={"login": LOGIN, "password": PASSWORD, "_csrf": token}, follow_redirects=False
    )

    assert response.headers["location"] == "/dashboard"
    assert started.get("/dashboard").text == "hello Alice"


def test_login_required_runs_handler_once(make_app: Callable[..., tuple[Starlette, Stormgate]]) -> None:
    calls: list[str] = []

    @login_required
    async def counted(request: Request) -> Response:
        calls.append(request.url.path)
        return PlainTextResponse("ok")

    app, _ = make_app()
    app.router.routes.append(Route("/counted", counted))
    with TestClient(app) as client:
        client.get("/counted", follow_redirects=False)
        assert calls == []

        log_in(client)
        response = client.get("/counted")

    assert response.text == "ok"
    assert calls == ["/counted"]


def test_login_required_preserves_metadata() -> None:
    async def my_view(request: Request) -> Response:
        """Docs."""
        return PlainTextResponse("ok")

    guarded = login_required(my_view)
    assert guarded.__name__ == "my_view"
    assert guarded.__doc__ == "Docs."


def test_groups_required_all_of(started: TestClient) -> None:
    log_in(started)

    assert started.get("/admin").text == "admin area"
    # Member of admins but not billing
    response = started.get("/admins-and-billing")
    assert response.status_code == 403
    assert "Forbidden" in response.text


def test_groups_required_any_of(started: TestClient, fake_provider: FakeProvider) -> None:
    log_in(started)
    assert started.get("/billing-or-staff").text == "billing or staff"

    fake_provider.groups = ["other"]
    assert started.get("/billing-or-staff").status_code == 403


def test_groups_required_all_of_satisfied(started: TestClient, fake_provider: FakeProvider) -> None:
    fake_provider.groups = ["admins", "billing"]
    log_in(started)
    assert started.get("/admins-and-billing").text == "admins and billing"


def test_groups_required_redirects_anonymous(started: TestClient) -> None:
    response = started.get("/admin", follow_redirects=False)

    assert response.status_code == 302
    assert response.headers["location"] == "/login?next=%2Fadmin"


def test_group_membership_read_per_request(started: TestClient, fake_provider: FakeProvider) -> None:
    """Membership changes at the provider apply on the next request."""
    log_in(started)
    assert started.get("/admin").status_code == 200

    fake_provider.groups = []
    assert started.get("/admin").status_code == 403


def test_stale_session_is_anonymous(started: TestClient, fake_provider: FakeProvider) -> None:
    log_in(started)
    fake_provider.account_lookup_status = 404

    response = started.get("/dashboard", follow_redirects=False)
    assert response.status_code == 302

    # The stale reference was dropped, so the next request makes no account lookup
    fake_provider.account_lookup_status = 200
    before = len(fake_provider.calls)
    started.get("/dashboard", follow_redirects=False)
    assert fake_provider.calls[before:] == []


def test_guard_outside_dispatcher_raises() -> None:
    @login_required
    async def view(request: Request) -> Response:
        return PlainTextResponse("ok")

    app = Starlette(routes=[Route("/", view)])
    with pytest.raises(StormgateError, match="dispatcher"):
        TestClient(app).get("/")


def test_groups_guard_outside_dispatcher_raises() -> None:
    @groups_required(["admins"])
    async def view(request: Request) -> Response:
        return PlainTextResponse("ok")

    app = Starlette(routes=[Route("/", view)])
    with pytest.raises(StormgateError):
        TestClient(app).get("/")
