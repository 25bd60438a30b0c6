"""Interpretation of authorization responses delivered as redirect URLs.

Authorization servers answer the wallet with a redirect to its own callback
rather than with a JSON body. The callback is either a custom scheme or a
local address nobody listens on, so fetching it fails in the transport
layer; the URL of that failed request is the authorization response. Servers
that answer with a plain body put the same URL in the body text.
"""

from urllib.parse import parse_qs, urlsplit

import httpx

from vcwallet.oid4vci.types import CodeRedirect, IdTokenRequest, RedirectOutcome

_FOLLOWED_SCHEMES = ("http", "https")


def query_params(url: str) -> dict[str, str]:
    """First value of every query parameter of ``url``."""
    parsed = parse_qs(urlsplit(url).query, keep_blank_values=True)
    return {key: values[0] for key, values in parsed.items()}


def interpret_redirect(response_url: str) -> RedirectOutcome:
    """Classify an authorization response URL.

    Raises:
        ValueError: the URL is empty.
    """
    if not response_url.strip():
        raise ValueError("Empty authorization response")
    params = query_params(response_url.strip())
    code = params.get("code")
    if code:
        return CodeRedirect(code=code)
    return IdTokenRequest(
        state=params.get("state"),
        nonce=params.get("nonce"),
        redirect_uri=params.get("redirect_uri"),
    )


def recover_redirect_target(exc: httpx.HTTPError, attempted_url: str) -> str | None:
    """Return the redirect target a transport failure was trying to reach.

    A failure on the originally attempted URL is an ordinary transport error
    and yields None.
    """
    if isinstance(exc, httpx.HTTPStatusError):
        return None
    try:
        failing_url = str(exc.request.url)
    except RuntimeError:
        return None
    if not failing_url or failing_url == attempted_url:
        return None
    return failing_url


async def fetch_redirect_target(
    client: httpx.AsyncClient,
    request: httpx.Request,
    callback_uri: str | None = None,
) -> str:
    """Send ``request`` and return the authorization response URL.

    Redirects are walked one hop at a time. A ``Location`` with a scheme other
    than http(s), or one pointing at the wallet's own ``callback_uri``, is
    returned without being fetched.

    Raises:
        httpx.HTTPError: the request failed before any redirect, the server
            answered with an error status, or the redirect chain is too long.
    """
    attempted_url = str(request.url)
    current = request
    for _ in range(client.max_redirects + 1):
        try:
            resp = await client.send(current, follow_redirects=False)
        except httpx.HTTPError as exc:
            target = recover_redirect_target(exc, attempted_url)
            if target is None:
                raise
            return target

        if not resp.is_redirect:
            resp.raise_for_status()
            return resp.text.strip()

        location = resp.headers["Location"]
        if callback_uri and location.startswith(callback_uri):
            return location
        scheme = urlsplit(location).scheme
        if scheme and scheme not in _FOLLOWED_SCHEMES:
            return location
        current = client.build_request("GET", current.url.join(location))

    raise httpx.TooManyRedirects("Exceeded maximum allowed redirects", request=current)
