"""Shared test fixtures for vcwallet."""

from collections.abc import AsyncIterator, Callable

import httpx
import pytest

from vcwallet.core.http import create_http_client
from vcwallet.core.settings import WalletSettings
from vcwallet.crypto.keys import generate_signing_identity, public_key_from_private
from vcwallet.crypto.types import SigningIdentity

Handler = Callable[[httpx.Request], httpx.Response]


def _route_key(method: str, url: httpx.URL) -> tuple[str, str]:
    return method.upper(), f"{url.scheme}://{url.netloc.decode()}{url.path}"


def _replay(response: httpx.Response) -> Handler:
    """Serve a fresh copy of ``response`` on every call."""

    def handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            response.status_code, headers=response.headers, content=response.content
        )

    return handler


class StubRouter:
    """In-process stand-in for issuer and authorization servers.

    Requests to unregistered URLs fail with a connection error, the way the
    wallet's own redirect callback is unreachable in practice.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Handler] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, url: str, handler: Handler | httpx.Response) -> None:
        if isinstance(handler, httpx.Response):
            handler = _replay(handler)
        self.routes[_route_key(method, httpx.URL(url))] = handler

    def calls(self, url: str) -> list[httpx.Request]:
        key_url = _route_key("GET", httpx.URL(url))[1]
        return [r for r in self.requests if _route_key(r.method, r.url)[1] == key_url]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get(_route_key(request.method, request.url))
        if handler is None:
            raise httpx.ConnectError("Connection refused", request=request)
        return handler(request)


@pytest.fixture(autouse=True)
def _set_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Pin settings that tests depend on."""
    monkeypatch.setenv("WALLET_REDIRECT_URI", "http://localhost:8080")


@pytest.fixture
def settings() -> WalletSettings:
    return WalletSettings()


@pytest.fixture(scope="session")
def identity() -> SigningIdentity:
    """A fresh did:key holder identity."""
    return generate_signing_identity()


@pytest.fixture(scope="session")
def public_key_pem(identity: SigningIdentity) -> str:
    return public_key_from_private(identity.private_key_pem)


@pytest.fixture
def stub() -> StubRouter:
    return StubRouter()


@pytest.fixture
async def client(
    stub: StubRouter, settings: WalletSettings
) -> AsyncIterator[httpx.AsyncClient]:
    """AsyncClient whose transport is the stub router."""
    async with create_http_client(settings, transport=httpx.MockTransport(stub)) as ac:
        yield ac
