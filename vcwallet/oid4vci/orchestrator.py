"""End-to-end issuance flow as an explicit per-attempt state machine."""

import logging
from enum import StrEnum

import httpx
from pydantic import BaseModel, ConfigDict, Field

from vcwallet.core.errors import (
    AuthorizationFailed,
    CredentialRequestFailed,
    FailureReason,
    InvalidTransition,
    IssuanceError,
)
from vcwallet.core.settings import WalletSettings
from vcwallet.crypto.types import SigningIdentity
from vcwallet.oid4vci.authorization import AuthorizationCoordinator
from vcwallet.oid4vci.credential import CredentialRequester
from vcwallet.oid4vci.offer import resolve_credential_offer
from vcwallet.oid4vci.pkce import generate_code_verifier
from vcwallet.oid4vci.token import TokenExchanger, select_grant
from vcwallet.oid4vci.types import (
    AuthorizationServerConfig,
    CredentialOffer,
    CredentialResponse,
    IssuerConfig,
    TokenResponse,
)

logger = logging.getLogger(__name__)


class IssuanceState(StrEnum):
    """Where an issuance attempt currently stands."""

    START = "start"
    OFFER_RESOLVED = "offer_resolved"
    AUTHORIZED = "authorized"
    TOKEN_ACQUIRED = "token_acquired"
    DEFERRED_PENDING = "deferred_pending"
    CREDENTIAL_ACQUIRED = "credential_acquired"
    FAILED = "failed"


_TRANSITIONS: dict[IssuanceState, frozenset[IssuanceState]] = {
    IssuanceState.START: frozenset({IssuanceState.OFFER_RESOLVED}),
    IssuanceState.OFFER_RESOLVED: frozenset({IssuanceState.AUTHORIZED}),
    IssuanceState.AUTHORIZED: frozenset({IssuanceState.TOKEN_ACQUIRED}),
    IssuanceState.TOKEN_ACQUIRED: frozenset(
        {IssuanceState.CREDENTIAL_ACQUIRED, IssuanceState.DEFERRED_PENDING}
    ),
    IssuanceState.DEFERRED_PENDING: frozenset(
        {IssuanceState.CREDENTIAL_ACQUIRED, IssuanceState.DEFERRED_PENDING}
    ),
    IssuanceState.CREDENTIAL_ACQUIRED: frozenset(),
    IssuanceState.FAILED: frozenset(),
}


class IssuanceAttempt(BaseModel):
    """Everything one issuance attempt knows, from inputs to results.

    A fresh ``code_verifier`` is generated per attempt; attempts are never
    re-run once finished or failed.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    identity: SigningIdentity
    issuer: IssuerConfig
    auth_server: AuthorizationServerConfig
    code_verifier: str = Field(default_factory=generate_code_verifier)
    user_pin: str | None = None

    state: IssuanceState = IssuanceState.START
    offer: CredentialOffer | None = None
    authorization_code: str | None = None
    token: TokenResponse | None = None
    response: CredentialResponse | None = None
    error: IssuanceError | None = None

    @property
    def credential(self) -> str | None:
        if self.response is None:
            return None
        return self.response.credential

    @property
    def is_terminal(self) -> bool:
        return not _TRANSITIONS[self.state]

    def advance(self, target: IssuanceState) -> None:
        """Move to ``target``, rejecting out-of-order transitions."""
        if target not in _TRANSITIONS[self.state]:
            raise InvalidTransition(f"Cannot move from {self.state} to {target}")
        logger.debug("Issuance attempt %s -> %s", self.state, target)
        self.state = target

    def fail(self, error: IssuanceError) -> None:
        """Record ``error`` and enter the terminal FAILED state."""
        if self.is_terminal:
            raise InvalidTransition(f"Cannot fail a {self.state} attempt")
        self.error = error
        self.state = IssuanceState.FAILED


class IssuanceOrchestrator:
    """Drives offers through resolution, authorization, token and credential."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        settings: WalletSettings | None = None,
    ) -> None:
        self._client = client
        self._settings = settings or WalletSettings()
        self._coordinator = AuthorizationCoordinator(client, self._settings)
        self._exchanger = TokenExchanger(client)
        self._requester = CredentialRequester(client, self._settings)

    def new_attempt(
        self,
        identity: SigningIdentity,
        issuer: IssuerConfig,
        auth_server: AuthorizationServerConfig,
        *,
        user_pin: str | None = None,
        code_verifier: str | None = None,
    ) -> IssuanceAttempt:
        """Create the context object for one issuance attempt."""
        fields: dict[str, object] = {}
        if code_verifier:
            fields["code_verifier"] = code_verifier
        return IssuanceAttempt(
            identity=identity,
            issuer=issuer,
            auth_server=auth_server,
            user_pin=user_pin,
            **fields,
        )

    async def issue(
        self,
        offer_string: str,
        identity: SigningIdentity,
        issuer: IssuerConfig,
        auth_server: AuthorizationServerConfig,
        *,
        user_pin: str | None = None,
    ) -> IssuanceAttempt:
        """Run a fresh attempt; returns it in CREDENTIAL_ACQUIRED or DEFERRED_PENDING.

        Raises:
            IssuanceError: the failing stage's error; the attempt is FAILED.
        """
        attempt = self.new_attempt(identity, issuer, auth_server, user_pin=user_pin)
        await self.run(attempt, offer_string)
        return attempt

    async def run(
        self, attempt: IssuanceAttempt, offer_string: str
    ) -> CredentialResponse:
        """Drive ``attempt`` from START to a credential or a deferred response."""
        if attempt.state is not IssuanceState.START:
            raise InvalidTransition(f"Attempt already {attempt.state}")
        try:
            offer = await resolve_credential_offer(offer_string, self._client)
            attempt.offer = offer
            attempt.advance(IssuanceState.OFFER_RESOLVED)

            attempt.authorization_code = await self._authorize(attempt, offer)
            attempt.advance(IssuanceState.AUTHORIZED)

            grant = select_grant(
                code=attempt.authorization_code,
                client_id=attempt.identity.did,
                code_verifier=attempt.code_verifier,
                pre_authorized_code=self._pre_authorized_code(offer),
                user_pin=attempt.user_pin,
            )
            attempt.token = await self._exchanger.exchange_token(
                grant, attempt.auth_server.token_endpoint
            )
            attempt.advance(IssuanceState.TOKEN_ACQUIRED)

            response = await self._requester.request_credential(
                attempt.identity,
                offer,
                attempt.token.access_token,
                attempt.token.c_nonce,
                attempt.issuer.credential_endpoint,
            )
            self._record_response(attempt, response)
        except IssuanceError as exc:
            logger.warning("Issuance failed at %s stage: %s", exc.stage, exc.message)
            attempt.fail(exc)
            raise
        return response

    async def resume_deferred(self, attempt: IssuanceAttempt) -> CredentialResponse:
        """Make one deferred-credential request for a DEFERRED_PENDING attempt.

        The attempt stays DEFERRED_PENDING while the issuer is not ready;
        polling cadence is up to the caller.
        """
        if attempt.state is not IssuanceState.DEFERRED_PENDING:
            raise InvalidTransition(f"Attempt is {attempt.state}, not deferred")
        if attempt.response is None or not attempt.response.acceptance_token:
            raise InvalidTransition("Deferred attempt has no acceptance token")
        try:
            endpoint = attempt.issuer.deferred_credential_endpoint
            if not endpoint:
                raise CredentialRequestFailed(
                    FailureReason.CONFIGURATION,
                    "Issuer has no deferred credential endpoint",
                )
            response = await self._requester.request_deferred_credential(
                attempt.response.acceptance_token, endpoint
            )
            self._record_response(attempt, response)
        except IssuanceError as exc:
            logger.warning("Deferred credential request failed: %s", exc.message)
            attempt.fail(exc)
            raise
        return response

    async def _authorize(
        self, attempt: IssuanceAttempt, offer: CredentialOffer
    ) -> str:
        if attempt.user_pin:
            code = self._pre_authorized_code(offer)
            if not code:
                raise AuthorizationFailed(
                    FailureReason.MISSING_FIELD,
                    "User PIN supplied but the offer has no pre-authorized code",
                )
            logger.info("Using pre-authorized code from offer")
            return code
        return await self._coordinator.request_authorization(
            attempt.identity, offer, attempt.auth_server, attempt.code_verifier
        )

    @staticmethod
    def _pre_authorized_code(offer: CredentialOffer) -> str | None:
        grant = offer.pre_authorized_grant
        return grant.pre_authorized_code if grant else None

    @staticmethod
    def _record_response(
        attempt: IssuanceAttempt, response: CredentialResponse
    ) -> None:
        grant = attempt.offer.pre_authorized_grant if attempt.offer else None
        response.is_pin_required = bool(grant and grant.user_pin_required)
        attempt.response = response
        if response.is_deferred:
            attempt.advance(IssuanceState.DEFERRED_PENDING)
        else:
            attempt.advance(IssuanceState.CREDENTIAL_ACQUIRED)
