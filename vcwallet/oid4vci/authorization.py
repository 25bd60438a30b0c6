"""Authorization-code acquisition, with the id_token fallback."""

import json
import logging

import httpx

from vcwallet.core.errors import (
    AuthorizationFailed,
    FailureReason,
    IdTokenExchangeFailed,
)
from vcwallet.core.settings import WalletSettings
from vcwallet.crypto.jwt_builder import SIGNING_ERRORS, ProofJwtBuilder
from vcwallet.crypto.types import SigningIdentity
from vcwallet.oid4vci.pkce import (
    CODE_CHALLENGE_METHOD,
    code_challenge,
    generate_opaque_value,
)
from vcwallet.oid4vci.redirect import (
    fetch_redirect_target,
    interpret_redirect,
    query_params,
)
from vcwallet.oid4vci.types import (
    AuthorizationServerConfig,
    CodeRedirect,
    CredentialOffer,
)

logger = logging.getLogger(__name__)


def _compact_json(value: object) -> str:
    return json.dumps(value, separators=(",", ":"))


def _reason_for(exc: httpx.HTTPError) -> FailureReason:
    if isinstance(exc, httpx.HTTPStatusError):
        return FailureReason.HTTP_STATUS
    return FailureReason.NETWORK


class AuthorizationCoordinator:
    """Obtains an authorization code for a credential offer."""

    def __init__(self, client: httpx.AsyncClient, settings: WalletSettings) -> None:
        self._client = client
        self._settings = settings

    def authorization_details(self, offer: CredentialOffer) -> list[dict[str, object]]:
        """The single ``openid_credential`` entry requested for ``offer``."""
        return [
            {
                "type": "openid_credential",
                "format": self._settings.credential_format,
                "types": offer.credentials[0].types,
                "locations": [offer.credential_issuer],
            }
        ]

    def client_metadata(self) -> dict[str, object]:
        """Wallet capabilities advertised to the authorization server."""
        return {
            "vp_formats_supported": {
                "jwt_vp": {"alg": ["ES256"]},
                "jwt_vc": {"alg": ["ES256"]},
            },
            "response_types_supported": ["vp_token", "id_token"],
            "authorization_endpoint": self._settings.redirect_uri,
        }

    def build_authorization_request(
        self,
        identity: SigningIdentity,
        offer: CredentialOffer,
        auth_server: AuthorizationServerConfig,
        code_verifier: str,
    ) -> httpx.Request:
        """Build the GET request to the authorization endpoint.

        A fresh ``state`` and ``nonce`` are generated on every call.
        """
        endpoint = auth_server.authorization_endpoint
        if not endpoint:
            raise AuthorizationFailed(
                FailureReason.CONFIGURATION, "No authorization endpoint configured"
            )
        params = {
            "response_type": "code",
            "scope": "openid",
            "state": generate_opaque_value(),
            "client_id": identity.did,
            "authorization_details": _compact_json(self.authorization_details(offer)),
            "redirect_uri": self._settings.redirect_uri,
            "nonce": generate_opaque_value(),
            "code_challenge": code_challenge(code_verifier),
            "code_challenge_method": CODE_CHALLENGE_METHOD,
            "client_metadata": _compact_json(self.client_metadata()),
        }
        if offer.issuer_state:
            params["issuer_state"] = offer.issuer_state
        try:
            return self._client.build_request("GET", endpoint, params=params)
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as exc:
            raise AuthorizationFailed(
                FailureReason.CONFIGURATION,
                f"Cannot build authorization URL from {endpoint!r}: {exc}",
            ) from exc

    async def request_authorization(
        self,
        identity: SigningIdentity,
        offer: CredentialOffer,
        auth_server: AuthorizationServerConfig,
        code_verifier: str,
    ) -> str:
        """Return an authorization code for ``offer``.

        Raises:
            AuthorizationFailed: no code could be obtained.
        """
        request = self.build_authorization_request(
            identity, offer, auth_server, code_verifier
        )
        logger.info(
            "Requesting authorization from %s", auth_server.authorization_endpoint
        )
        try:
            response_url = await fetch_redirect_target(
                self._client, request, self._settings.redirect_uri
            )
        except httpx.HTTPError as exc:
            raise AuthorizationFailed(
                _reason_for(exc), f"Authorization request failed: {exc}"
            ) from exc

        try:
            outcome = interpret_redirect(response_url)
        except ValueError as exc:
            raise AuthorizationFailed(
                FailureReason.MISSING_FIELD, "Authorization response was empty"
            ) from exc

        if isinstance(outcome, CodeRedirect):
            logger.info("Authorization code received directly")
            return outcome.code

        logger.info("No code in authorization response, answering with id_token")
        return await self.complete_via_id_token(
            identity,
            auth_server,
            redirect_uri=outcome.redirect_uri or "",
            nonce=outcome.nonce or "",
            state=outcome.state or "",
        )

    async def complete_via_id_token(
        self,
        identity: SigningIdentity,
        auth_server: AuthorizationServerConfig,
        redirect_uri: str,
        nonce: str,
        state: str,
    ) -> str:
        """Post a signed id_token to ``redirect_uri`` and return the code.

        Raises:
            IdTokenExchangeFailed: the exchange did not yield a code.
        """
        audience = auth_server.authorization_endpoint
        if not audience:
            raise IdTokenExchangeFailed(
                FailureReason.CONFIGURATION, "No authorization endpoint configured"
            )
        if not redirect_uri:
            raise IdTokenExchangeFailed(
                FailureReason.MISSING_FIELD,
                "Authorization response has no redirect_uri",
            )

        try:
            id_token = ProofJwtBuilder(identity, self._settings).build_id_token(
                audience, nonce
            )
        except SIGNING_ERRORS as exc:
            raise IdTokenExchangeFailed(
                FailureReason.CONFIGURATION, f"Cannot sign id_token: {exc}"
            ) from exc

        try:
            request = self._client.build_request(
                "POST",
                redirect_uri,
                data={"id_token": id_token, "state": state},
            )
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as exc:
            raise IdTokenExchangeFailed(
                FailureReason.SCHEMA, f"Invalid redirect_uri {redirect_uri!r}"
            ) from exc

        try:
            response_url = await fetch_redirect_target(
                self._client, request, self._settings.redirect_uri
            )
        except httpx.HTTPError as exc:
            raise IdTokenExchangeFailed(
                _reason_for(exc), f"id_token response failed: {exc}"
            ) from exc

        code = query_params(response_url).get("code")
        if not code:
            raise IdTokenExchangeFailed(
                FailureReason.MISSING_FIELD, "id_token response carries no code"
            )
        logger.info("Authorization code received via id_token")
        return code
