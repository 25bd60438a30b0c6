"""Async HTTP client construction."""

import httpx

from vcwallet.core.settings import WalletSettings


def create_http_client(
    settings: WalletSettings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Build an AsyncClient for issuer and authorization-server calls.

    Plain JSON calls follow redirects; authorization responses are walked hop
    by hop in :mod:`vcwallet.oid4vci.redirect`.
    """
    return httpx.AsyncClient(
        transport=transport,
        timeout=httpx.Timeout(settings.http_timeout),
        follow_redirects=True,
        headers={"User-Agent": settings.user_agent},
    )
