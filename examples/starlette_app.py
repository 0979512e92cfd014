import os
import sys

# Add src to path for running directly
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "../src")))

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import HTMLResponse, PlainTextResponse
from starlette.routing import Route

import stormgate
from stormgate import get_current_user


async def home(request: Request) -> HTMLResponse:
    user = get_current_user()
    if user is None:
        return HTMLResponse('<p>Welcome! <a href="/login">Log in</a> or <a href="/register">register</a>.</p>')
    return HTMLResponse(f'<p>Hello {user.given_name}. <a href="/logout">Log out</a></p>')


@stormgate.login_required
async def dashboard(request: Request) -> PlainTextResponse:
    return PlainTextResponse(f"Dashboard for {request.state.user.email}")


@stormgate.groups_required(["admins", "editors"], require_all=False)
async def admin(request: Request) -> PlainTextResponse:
    return PlainTextResponse("Admins and editors only")


app = Starlette(
    routes=[
        Route("/", home),
        Route("/dashboard", dashboard),
        Route("/admin", admin),
    ]
)

# Credentials, application href and session secret come from STORMGATE_* variables, e.g.
#   STORMGATE_API_KEY_FILE=~/.stormpath/apiKey.properties
#   STORMGATE_APPLICATION=https://api.stormpath.com/v1/applications/<id>
#   STORMGATE_SECRET_KEY=change-me
# Run with any ASGI server: uvicorn examples.starlette_app:app
gate = stormgate.init(app, redirect_url="/dashboard")
