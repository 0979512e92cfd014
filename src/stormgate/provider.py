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
Async client for the identity provider REST API (applications, accounts, groups).
"""

import base64
import os
from typing import Any
from urllib.parse import urljoin

import anyio
import httpx
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from pydantic import ValidationError

from stormgate.config import DEFAULT_BASE_URL
from stormgate.exceptions import ApiKeyLoadError, ProviderError, ResourceError
from stormgate.models import Account, ApiKey, ApplicationData, ResourceStatus
from stormgate.utils.logger import logger

API_KEY_ID_PROPERTY = "apiKey.id"
API_KEY_SECRET_PROPERTY = "apiKey.secret"


def parse_api_key_properties(text: str) -> dict[str, str]:
    """
    Parses a Java-properties style document into a dict.

    Supports `#` and `!` comments and both `=` and `:` separators.
    """
    properties: dict[str, str] = {}
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line[0] in "#!":
            continue
        positions = [pos for pos in (line.find("="), line.find(":")) if pos != -1]
        if not positions:
            continue
        sep = min(positions)
        key = line[:sep].strip()
        if key:
            properties[key] = line[sep + 1 :].strip()
    return properties


async def load_api_key(path: str) -> ApiKey:
    """
    Loads an API key pair from an `apiKey.properties` file.

    Args:
        path: Path to the file. `~` is expanded.

    Returns:
        ApiKey: The loaded key pair.

    Raises:
        ApiKeyLoadError: If the file cannot be read or lacks `apiKey.id` / `apiKey.secret`.
    """
    file_path = anyio.Path(os.path.expanduser(path))
    try:
        text = await file_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ApiKeyLoadError(f"Unable to read API key file {path}: {e}") from e

    properties = parse_api_key_properties(text)
    key_id = properties.get(API_KEY_ID_PROPERTY)
    key_secret = properties.get(API_KEY_SECRET_PROPERTY)
    if not key_id or not key_secret:
        raise ApiKeyLoadError(
            f"API key file {path} must define both {API_KEY_ID_PROPERTY} and {API_KEY_SECRET_PROPERTY}"
        )

    logger.debug(f"Loaded API key {key_id} from {path}")
    return ApiKey(id=key_id, secret=key_secret)


class Application:
    """
    A provider application bound to the client that fetched it.

    Attributes:
        data (ApplicationData): The application's attributes as returned by the provider.
    """

    def __init__(self, data: ApplicationData, client: "Client") -> None:
        self.data = data
        self._client = client

    @property
    def href(self) -> str:
        return self.data.href

    @property
    def name(self) -> str:
        return self.data.name

    @property
    def status(self) -> ResourceStatus:
        return self.data.status

    def __repr__(self) -> str:
        return f"Application(href={self.href!r}, name={self.name!r}, status={self.status.value!r})"

    async def authenticate_account(self, login: str, password: str) -> Account:
        """
        Authenticates a username/email and password against the application's directories.

        Args:
            login: Username or email.
            password: Plain text password, sent once over TLS to the provider.

        Returns:
            Account: The authenticated account, with its groups expanded.

        Raises:
            ResourceError: If the provider rejects the credentials.
            ProviderError: If the provider cannot be reached or answers unexpectedly.
        """
        value = base64.b64encode(f"{login}:{password}".encode()).decode("ascii")
        body = await self._client.request(
            "POST",
            f"{self.href}/loginAttempts",
            json={"type": "basic", "value": value},
        )
        account_ref = body.get("account")
        if not isinstance(account_ref, dict) or not account_ref.get("href"):
            raise ProviderError("Login attempt response did not reference an account")
        return await self._client.get_account(account_ref["href"])

    async def create_account(
        self,
        given_name: str,
        surname: str,
        email: str,
        password: str,
        username: str | None = None,
    ) -> Account:
        """
        Creates an account in the application's default account store.

        Returns:
            Account: The new account. Its status is UNVERIFIED when the directory requires email verification.

        Raises:
            ResourceError: If the provider rejects the account (duplicate email, weak password, ...).
        """
        payload: dict[str, Any] = {
            "givenName": given_name,
            "surname": surname,
            "email": email,
            "password": password,
        }
        if username:
            payload["username"] = username
        body = await self._client.request("POST", f"{self.href}/accounts", json=payload)
        return self._client.parse_account(body)


class Client:
    """
    Authenticated handle to the identity provider.

    Owns an `httpx.AsyncClient` unless one is supplied. Use as an async context manager,
    or call `aclose()` when the process shuts down.
    """

    def __init__(
        self,
        api_key: ApiKey,
        user_agent: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Initialize the Client.

        Args:
            api_key: The API key pair used for HTTP basic authentication.
            user_agent: Value of the `User-Agent` header sent with every request.
            base_url: Root of the provider REST API; relative hrefs are resolved against it.
            timeout: Timeout in seconds for each request.
            http_client: External async client (optional). It is not closed by `aclose()`.
        """
        self.api_key = api_key
        self.user_agent = user_agent
        self.base_url = base_url.rstrip("/") + "/"
        self._auth = httpx.BasicAuth(api_key.id, api_key.secret.get_secret_value())
        self._headers = {"Accept": "application/json", "User-Agent": user_agent}
        self._internal_client = http_client is None

        if http_client is not None:
            self._client = http_client
        else:
            self._client = httpx.AsyncClient(timeout=timeout)
            HTTPXClientInstrumentor().instrument_client(self._client)

    async def __aenter__(self) -> "Client":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._internal_client:
            await self._client.aclose()

    def resolve(self, href: str) -> str:
        """Absolute hrefs are used as-is; anything else is taken relative to `base_url`."""
        if href.startswith(("https://", "http://")):
            return href
        return urljoin(self.base_url, href.lstrip("/"))

    async def request(
        self,
        method: str,
        href: str,
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """
        Sends one request to the provider and returns the decoded JSON object.

        No retries are performed.

        Raises:
            ResourceError: For any 4xx/5xx answer, with the provider's error fields.
            ProviderError: For transport failures or a body that is not a JSON object.
        """
        url = self.resolve(href)
        try:
            response = await self._client.request(
                method, url, json=json, params=params, headers=self._headers, auth=self._auth
            )
        except httpx.HTTPError as e:
            raise ProviderError(f"{method} {url} failed: {e}") from e

        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = None
            error = ResourceError.from_body(response.status_code, body)
            logger.debug(f"{method} {url} -> {response.status_code} ({error.code}): {error.developer_message}")
            raise error

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(f"{method} {url} returned a non-JSON body") from e
        if not isinstance(data, dict):
            raise ProviderError(f"{method} {url} returned {type(data).__name__}, expected an object")
        return data

    def parse_account(self, data: dict[str, Any]) -> Account:
        try:
            return Account.model_validate(data)
        except ValidationError as e:
            raise ProviderError(f"Invalid account payload: {e}") from e

    async def get_application(self, href: str) -> Application:
        """
        Fetches an application by href.

        Raises:
            ResourceError: If the provider answers with an error (e.g. 404 for an unknown application).
            ProviderError: For transport failures or an invalid payload.
        """
        body = await self.request("GET", href)
        try:
            data = ApplicationData.model_validate(body)
        except ValidationError as e:
            raise ProviderError(f"Invalid application payload from {href}: {e}") from e
        return Application(data, self)

    async def get_account(self, href: str) -> Account:
        """Fetches an account by href with its groups expanded."""
        body = await self.request("GET", href, params={"expand": "groups"})
        return self.parse_account(body)
