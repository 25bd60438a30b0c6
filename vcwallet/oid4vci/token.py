"""Token exchange for the authorization-code and pre-authorized-code grants."""

import logging

import httpx
from pydantic import BaseModel, ValidationError

from vcwallet.core.errors import FailureReason, TokenRequestFailed
from vcwallet.oid4vci.types import (
    AUTHORIZATION_CODE_GRANT_TYPE,
    PRE_AUTHORIZED_GRANT_TYPE,
    TokenResponse,
)

logger = logging.getLogger(__name__)


class AuthorizationCodeGrant(BaseModel):
    """Redeem an authorization code with its PKCE verifier."""

    code: str
    client_id: str
    code_verifier: str

    def form(self) -> dict[str, str]:
        return {
            "grant_type": AUTHORIZATION_CODE_GRANT_TYPE,
            "code": self.code,
            "client_id": self.client_id,
            "code_verifier": self.code_verifier,
        }


class PreAuthorizedCodeGrant(BaseModel):
    """Redeem an offer's pre-authorized code with the user's PIN."""

    pre_authorized_code: str
    user_pin: str

    def form(self) -> dict[str, str]:
        return {
            "grant_type": PRE_AUTHORIZED_GRANT_TYPE,
            "pre-authorized_code": self.pre_authorized_code,
            "user_pin": self.user_pin,
        }


GrantContext = AuthorizationCodeGrant | PreAuthorizedCodeGrant


def select_grant(
    *,
    code: str,
    client_id: str,
    code_verifier: str,
    pre_authorized_code: str | None = None,
    user_pin: str | None = None,
) -> GrantContext:
    """Pick the grant: pre-authorized iff a non-empty PIN is supplied.

    Raises:
        TokenRequestFailed: a PIN was supplied but no pre-authorized code.
    """
    if user_pin:
        if not pre_authorized_code:
            raise TokenRequestFailed(
                FailureReason.MISSING_FIELD,
                "User PIN supplied but the offer has no pre-authorized code",
            )
        return PreAuthorizedCodeGrant(
            pre_authorized_code=pre_authorized_code, user_pin=user_pin
        )
    return AuthorizationCodeGrant(
        code=code, client_id=client_id, code_verifier=code_verifier
    )


class TokenExchanger:
    """Posts grants to the token endpoint."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def exchange_token(
        self, grant: GrantContext, token_endpoint: str | None
    ) -> TokenResponse:
        """Exchange ``grant`` for an access token.

        Raises:
            TokenRequestFailed: transport error, error status, or bad body.
        """
        if not token_endpoint:
            raise TokenRequestFailed(
                FailureReason.CONFIGURATION, "No token endpoint configured"
            )

        form = grant.form()
        logger.info("Requesting token (%s) from %s", form["grant_type"], token_endpoint)
        try:
            resp = await self._client.post(token_endpoint, data=form)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise TokenRequestFailed(
                FailureReason.NETWORK, f"Token request failed: {exc}"
            ) from exc
        if resp.is_error:
            raise TokenRequestFailed(
                FailureReason.HTTP_STATUS,
                f"HTTP {resp.status_code} from token endpoint: {resp.text}",
            )

        try:
            return TokenResponse.model_validate_json(resp.content)
        except ValidationError as exc:
            raise TokenRequestFailed(
                FailureReason.SCHEMA, f"Token response does not match schema: {exc}"
            ) from exc
