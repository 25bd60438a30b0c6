"""Credential and deferred-credential requests."""

import logging

import httpx
from pydantic import ValidationError

from vcwallet.core.errors import CredentialRequestFailed, FailureReason
from vcwallet.core.settings import WalletSettings
from vcwallet.crypto.jwt_builder import SIGNING_ERRORS, ProofJwtBuilder
from vcwallet.crypto.types import SigningIdentity
from vcwallet.oid4vci.types import CredentialOffer, CredentialResponse

logger = logging.getLogger(__name__)


class CredentialRequester:
    """Requests credentials from the issuer's credential endpoints."""

    def __init__(self, client: httpx.AsyncClient, settings: WalletSettings) -> None:
        self._client = client
        self._settings = settings

    def credential_request_body(
        self, identity: SigningIdentity, offer: CredentialOffer, c_nonce: str | None
    ) -> dict[str, object]:
        """JSON body for the credential endpoint, with a fresh proof JWT."""
        proof_jwt = ProofJwtBuilder(identity, self._settings).build_proof_jwt(
            offer.credential_issuer, c_nonce
        )
        return {
            "types": offer.credentials[0].types,
            "format": self._settings.credential_format,
            "proof": {"proof_type": "jwt", "jwt": proof_jwt},
        }

    async def _post(
        self, endpoint: str, token: str, body: dict[str, object]
    ) -> CredentialResponse:
        try:
            resp = await self._client.post(
                endpoint,
                json=body,
                headers={"Authorization": f"Bearer {token}"},
            )
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise CredentialRequestFailed(
                FailureReason.NETWORK, f"Credential request to {endpoint} failed: {exc}"
            ) from exc
        if resp.is_error:
            raise CredentialRequestFailed(
                FailureReason.HTTP_STATUS,
                f"HTTP {resp.status_code} from {endpoint}: {resp.text}",
            )
        try:
            return CredentialResponse.model_validate_json(resp.content)
        except ValidationError as exc:
            raise CredentialRequestFailed(
                FailureReason.SCHEMA,
                f"Credential response does not match schema: {exc}",
            ) from exc

    async def request_credential(
        self,
        identity: SigningIdentity,
        offer: CredentialOffer,
        access_token: str,
        c_nonce: str | None,
        endpoint: str,
    ) -> CredentialResponse:
        """Request the offered credential, proving possession of the DID key.

        Raises:
            CredentialRequestFailed: unusable signing key, transport error,
                error status, or bad body.
        """
        try:
            body = self.credential_request_body(identity, offer, c_nonce)
        except SIGNING_ERRORS as exc:
            raise CredentialRequestFailed(
                FailureReason.CONFIGURATION, f"Cannot sign proof JWT: {exc}"
            ) from exc
        logger.info("Requesting credential %s from %s", body["types"], endpoint)
        response = await self._post(endpoint, access_token, body)
        if response.is_deferred:
            logger.info("Credential issuance deferred by %s", endpoint)
        return response

    async def request_deferred_credential(
        self, acceptance_token: str, deferred_endpoint: str
    ) -> CredentialResponse:
        """Single attempt at collecting a deferred credential.

        A still-pending issuer answers with another deferred response.
        """
        logger.info("Requesting deferred credential from %s", deferred_endpoint)
        return await self._post(deferred_endpoint, acceptance_token, {})
