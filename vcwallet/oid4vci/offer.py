"""Credential offer resolution from inline JSON or a credential_offer_uri."""

import logging
from urllib.parse import parse_qs, unquote, urlsplit

import httpx
from pydantic import ValidationError

from vcwallet.core.errors import FailureReason, MalformedOffer
from vcwallet.oid4vci.types import CredentialOffer

logger = logging.getLogger(__name__)

INLINE_PARAM = "credential_offer"
INLINE_MARKER = f"{INLINE_PARAM}="
OFFER_URI_PARAM = "credential_offer_uri"


def _parse_offer(raw: str | bytes) -> CredentialOffer:
    try:
        return CredentialOffer.model_validate_json(raw)
    except ValidationError as exc:
        raise MalformedOffer(
            FailureReason.SCHEMA, f"Credential offer does not match schema: {exc}"
        ) from exc


def _inline_fragment(offer_string: str) -> str | None:
    """Return the JSON carried by ``credential_offer=``.

    Raw JSON runs to the end of the string. An encoded value is read as a
    query parameter, so later parameters are not part of it.
    """
    if INLINE_MARKER not in offer_string:
        return None
    fragment = offer_string.split(INLINE_MARKER, 1)[1].strip()
    if fragment.startswith("{"):
        return fragment
    values = parse_qs(urlsplit(offer_string.strip()).query).get(INLINE_PARAM)
    if values:
        return values[0]
    return unquote(fragment)


def _offer_uri(offer_string: str) -> str | None:
    query = urlsplit(offer_string.strip()).query
    values = parse_qs(query).get(OFFER_URI_PARAM)
    if not values or not values[0]:
        return None
    return values[0]


async def resolve_credential_offer(
    offer_string: str, client: httpx.AsyncClient
) -> CredentialOffer:
    """Resolve a wallet-scanned offer string into a CredentialOffer.

    An inline ``credential_offer=<json>`` is parsed without any network call;
    otherwise the ``credential_offer_uri`` is fetched once.

    Raises:
        MalformedOffer: no offer present, fetch failed, or invalid body.
    """
    fragment = _inline_fragment(offer_string)
    if fragment is not None:
        logger.debug("Resolving inline credential offer")
        return _parse_offer(fragment)

    uri = _offer_uri(offer_string)
    if uri is None:
        raise MalformedOffer(
            FailureReason.MISSING_FIELD,
            "No credential_offer or credential_offer_uri in offer string",
        )

    logger.debug("Fetching credential offer from %s", uri)
    try:
        resp = await client.get(uri, headers={"Accept": "application/json"})
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        raise MalformedOffer(
            FailureReason.NETWORK, f"Fetching {uri} failed: {exc}"
        ) from exc
    if resp.is_error:
        raise MalformedOffer(
            FailureReason.HTTP_STATUS, f"HTTP {resp.status_code} fetching {uri}"
        )
    return _parse_offer(resp.content)
