# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/stormgate

from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

import httpx
import pytest
from conftest import HOST_ROUTES, FakeProvider
from starlette.applications import Starlette
from starlette.middleware.sessions import SessionMiddleware
from starlette.testclient import TestClient

import stormgate
from stormgate.config import init_settings
from stormgate.dispatcher import DispatchMiddleware
from stormgate.exceptions import ApplicationNotFoundError, ConfigurationError
from stormgate.gate import Stormgate
from stormgate.middleware import CSRFMiddleware, FormBodyMiddleware
from stormgate.startup import StartupState


def test_stack_order_with_csrf(options: dict[str, Any]) -> None:
    gate = Stormgate(init_settings(options))
    assert [m.cls for m in gate.middleware()] == [
        SessionMiddleware,
        FormBodyMiddleware,
        CSRFMiddleware,
        DispatchMiddleware,
    ]


def test_stack_without_csrf(options: dict[str, Any]) -> None:
    gate = Stormgate(init_settings({**options, "use_csrf": False}))
    assert CSRFMiddleware not in [m.cls for m in gate.middleware()]


def test_session_options(options: dict[str, Any]) -> None:
    gate = Stormgate(
        init_settings({**options, "session_duration": 3600, "enable_https": True, "session_cookie": "sid"})
    )
    session = gate.middleware()[0]
    assert session.kwargs["secret_key"] == "test-session-secret"
    assert session.kwargs["session_cookie"] == "sid"
    assert session.kwargs["max_age"] == 3600
    assert session.kwargs["https_only"] is True


def test_init_installs_stack_outermost_first(make_app: Callable[..., tuple[Starlette, Stormgate]]) -> None:
    app, gate = make_app()

    assert [m.cls for m in app.user_middleware] == [
        SessionMiddleware,
        FormBodyMiddleware,
        CSRFMiddleware,
        DispatchMiddleware,
    ]
    assert app.state.stormgate is gate
    assert gate.state is StartupState.VALIDATED


def test_init_without_csrf(make_app: Callable[..., tuple[Starlette, Stormgate]]) -> None:
    app, _ = make_app(use_csrf=False)
    assert CSRFMiddleware not in [m.cls for m in app.user_middleware]

    with TestClient(app) as client:
        response = client.post("/echo", data={"name": "alice"})
    assert response.status_code == 200
    assert response.json() == {"name": "alice"}


def test_init_accepts_keyword_settings(options: dict[str, Any], http_client: httpx.AsyncClient) -> None:
    app = Starlette()
    gate = stormgate.init(app, options, http_client=http_client, login_url="/signin")
    assert gate.settings.login_url == "/signin"


def test_init_rejects_incomplete_settings(options: dict[str, Any], fake_provider: FakeProvider) -> None:
    options.pop("application")
    app = Starlette()

    with pytest.raises(ConfigurationError) as exc:
        stormgate.init(app, options)

    assert exc.value.problems == ["An application href is required: set application"]
    assert app.user_middleware == []
    assert fake_provider.calls == []


def test_lifespan_runs_startup(
    make_app: Callable[..., tuple[Starlette, Stormgate]], fake_provider: FakeProvider
) -> None:
    app, gate = make_app()
    assert gate.ready is False

    with TestClient(app) as client:
        assert gate.ready is True
        assert gate.context is not None
        assert gate.context.application.name == "My App"
        assert client.get("/").text == "home"


def test_lifespan_startup_failure_aborts(
    make_app: Callable[..., tuple[Starlette, Stormgate]], fake_provider: FakeProvider
) -> None:
    fake_provider.application_status = 404
    app, gate = make_app()

    with pytest.raises(ApplicationNotFoundError):
        with TestClient(app):
            pass

    assert gate.state is StartupState.FAILED


def test_host_lifespan_runs_after_startup(options: dict[str, Any], http_client: httpx.AsyncClient) -> None:
    events: list[str] = []
    gate_holder: list[Stormgate] = []

    @asynccontextmanager
    async def host_lifespan(app: Starlette) -> AsyncIterator[dict[str, Any]]:
        events.append(f"host start ready={gate_holder[0].ready}")
        yield {"resource": "db"}
        events.append("host stop")

    app = Starlette(routes=list(HOST_ROUTES), lifespan=host_lifespan)
    gate_holder.append(stormgate.init(app, options, http_client=http_client))

    with TestClient(app) as client:
        assert client.get("/").text == "home"

    assert events == ["host start ready=True", "host stop"]


@pytest.mark.asyncio
async def test_manual_startup_and_shutdown(options: dict[str, Any], http_client: httpx.AsyncClient) -> None:
    """Hosts that manage their own lifespan drive the boot sequence directly."""
    gate = Stormgate(init_settings(options), http_client=http_client)

    context = await gate.startup()
    assert gate.ready is True
    assert context is gate.context

    await gate.shutdown()
    assert http_client.is_closed is False


def test_middleware_list_for_constructor(options: dict[str, Any], http_client: httpx.AsyncClient) -> None:
    """The stack can be passed to the Starlette constructor instead of init_app."""
    gate = Stormgate(init_settings(options), http_client=http_client)
    gate.sequencer.validate()

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        await gate.startup()
        yield
        await gate.shutdown()

    app = Starlette(routes=list(HOST_ROUTES), middleware=gate.middleware(), lifespan=lifespan)
    with TestClient(app) as client:
        assert "<h1>Log In</h1>" in client.get("/login").text
