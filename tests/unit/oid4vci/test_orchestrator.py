"""Tests for the issuance state machine."""

import json
from urllib.parse import parse_qs

import httpx
import pytest

from tests.conftest import StubRouter

from vcwallet.core.errors import (
    AuthorizationFailed,
    CredentialRequestFailed,
    FailureReason,
    InvalidTransition,
    IssuanceStage,
    MalformedOffer,
    TokenRequestFailed,
)
from vcwallet.core.settings import WalletSettings
from vcwallet.crypto.types import SigningIdentity
from vcwallet.oid4vci.orchestrator import (
    IssuanceAttempt,
    IssuanceOrchestrator,
    IssuanceState,
)
from vcwallet.oid4vci.types import (
    PRE_AUTHORIZED_GRANT_TYPE,
    AuthorizationServerConfig,
    IssuerConfig,
)

AUTH_ENDPOINT = "https://auth.example/authorize"
TOKEN_ENDPOINT = "https://auth.example/token"
CREDENTIAL_ENDPOINT = "https://issuer.example/credential"
DEFERRED_ENDPOINT = "https://issuer.example/credential_deferred"

ISSUER = IssuerConfig(
    credential_issuer="https://issuer.example",
    credential_endpoint=CREDENTIAL_ENDPOINT,
    deferred_credential_endpoint=DEFERRED_ENDPOINT,
)
AUTH_SERVER = AuthorizationServerConfig(
    authorization_endpoint=AUTH_ENDPOINT, token_endpoint=TOKEN_ENDPOINT
)

OFFER = {
    "credential_issuer": "https://issuer.example",
    "credentials": [{"format": "jwt_vc", "types": ["VerifiedEmail"]}],
    "grants": {"authorization_code": {"issuer_state": "S"}},
}
PRE_AUTH_OFFER = {
    "credential_issuer": "https://issuer.example",
    "credentials": [{"format": "jwt_vc", "types": ["VerifiedEmail"]}],
    "grants": {
        PRE_AUTHORIZED_GRANT_TYPE: {
            "pre-authorized_code": "pre-123",
            "user_pin_required": True,
        }
    },
}


def _offer_string(offer: dict[str, object]) -> str:
    return "openid-credential-offer://?credential_offer=" + json.dumps(offer)


def _form(request: httpx.Request) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


@pytest.fixture
def orchestrator(
    client: httpx.AsyncClient, settings: WalletSettings
) -> IssuanceOrchestrator:
    return IssuanceOrchestrator(client, settings)


@pytest.fixture
def happy_servers(stub: StubRouter) -> StubRouter:
    stub.add(
        "GET",
        AUTH_ENDPOINT,
        httpx.Response(302, headers={"Location": "http://localhost:8080?code=XYZ"}),
    )
    stub.add(
        "POST",
        TOKEN_ENDPOINT,
        httpx.Response(200, json={"access_token": "AT1", "c_nonce": "N1"}),
    )
    stub.add(
        "POST",
        CREDENTIAL_ENDPOINT,
        httpx.Response(200, json={"format": "jwt_vc", "credential": "eyJ..."}),
    )
    return stub


class TestIssuanceAttempt:
    """Tests for the per-attempt state machine."""

    def test_fresh_attempt(self, identity: SigningIdentity) -> None:
        attempt = IssuanceAttempt(
            identity=identity, issuer=ISSUER, auth_server=AUTH_SERVER
        )
        assert attempt.state is IssuanceState.START
        assert len(attempt.code_verifier) >= 43
        assert attempt.credential is None
        assert not attempt.is_terminal

    def test_verifiers_differ_per_attempt(self, identity: SigningIdentity) -> None:
        first = IssuanceAttempt(
            identity=identity, issuer=ISSUER, auth_server=AUTH_SERVER
        )
        second = IssuanceAttempt(
            identity=identity, issuer=ISSUER, auth_server=AUTH_SERVER
        )
        assert first.code_verifier != second.code_verifier

    def test_out_of_order_transition_rejected(
        self, identity: SigningIdentity
    ) -> None:
        attempt = IssuanceAttempt(
            identity=identity, issuer=ISSUER, auth_server=AUTH_SERVER
        )
        with pytest.raises(InvalidTransition):
            attempt.advance(IssuanceState.TOKEN_ACQUIRED)
        assert attempt.state is IssuanceState.START

    def test_failed_is_terminal(self, identity: SigningIdentity) -> None:
        attempt = IssuanceAttempt(
            identity=identity, issuer=ISSUER, auth_server=AUTH_SERVER
        )
        error = MalformedOffer(FailureReason.SCHEMA, "bad")
        attempt.fail(error)
        assert attempt.state is IssuanceState.FAILED
        assert attempt.error is error
        assert attempt.is_terminal
        with pytest.raises(InvalidTransition):
            attempt.advance(IssuanceState.OFFER_RESOLVED)
        with pytest.raises(InvalidTransition):
            attempt.fail(error)


class TestIssue:
    """Tests for driving an attempt end to end."""

    async def test_authorization_code_flow(
        self,
        orchestrator: IssuanceOrchestrator,
        identity: SigningIdentity,
        happy_servers: StubRouter,
    ) -> None:
        attempt = await orchestrator.issue(
            _offer_string(OFFER), identity, ISSUER, AUTH_SERVER
        )
        assert attempt.state is IssuanceState.CREDENTIAL_ACQUIRED
        assert attempt.credential == "eyJ..."
        assert attempt.authorization_code == "XYZ"
        assert attempt.token is not None
        assert attempt.token.access_token == "AT1"
        assert attempt.response is not None
        assert attempt.response.is_pin_required is False

        form = _form(happy_servers.calls(TOKEN_ENDPOINT)[0])
        assert form == {
            "grant_type": "authorization_code",
            "code": "XYZ",
            "client_id": identity.did,
            "code_verifier": attempt.code_verifier,
        }

    async def test_pre_authorized_flow_skips_authorization(
        self,
        orchestrator: IssuanceOrchestrator,
        identity: SigningIdentity,
        happy_servers: StubRouter,
    ) -> None:
        attempt = await orchestrator.issue(
            _offer_string(PRE_AUTH_OFFER),
            identity,
            ISSUER,
            AUTH_SERVER,
            user_pin="1234",
        )
        assert attempt.state is IssuanceState.CREDENTIAL_ACQUIRED
        assert happy_servers.calls(AUTH_ENDPOINT) == []
        assert attempt.response is not None
        assert attempt.response.is_pin_required is True

        form = _form(happy_servers.calls(TOKEN_ENDPOINT)[0])
        assert form == {
            "grant_type": PRE_AUTHORIZED_GRANT_TYPE,
            "pre-authorized_code": "pre-123",
            "user_pin": "1234",
        }

    async def test_pin_without_pre_authorized_offer(
        self,
        orchestrator: IssuanceOrchestrator,
        identity: SigningIdentity,
        happy_servers: StubRouter,
    ) -> None:
        with pytest.raises(AuthorizationFailed):
            await orchestrator.issue(
                _offer_string(OFFER), identity, ISSUER, AUTH_SERVER, user_pin="1234"
            )
        assert happy_servers.requests == []

    async def test_malformed_offer_fails_attempt(
        self, orchestrator: IssuanceOrchestrator, identity: SigningIdentity
    ) -> None:
        attempt = orchestrator.new_attempt(identity, ISSUER, AUTH_SERVER)
        with pytest.raises(MalformedOffer):
            await orchestrator.run(attempt, "credential_offer={}")
        assert attempt.state is IssuanceState.FAILED
        assert attempt.error is not None
        assert attempt.error.stage is IssuanceStage.OFFER

    async def test_token_failure_fails_attempt(
        self,
        orchestrator: IssuanceOrchestrator,
        identity: SigningIdentity,
        stub: StubRouter,
    ) -> None:
        stub.add(
            "GET",
            AUTH_ENDPOINT,
            httpx.Response(302, headers={"Location": "http://localhost:8080?code=XYZ"}),
        )
        stub.add(
            "POST", TOKEN_ENDPOINT, httpx.Response(400, json={"error": "invalid_grant"})
        )
        attempt = orchestrator.new_attempt(identity, ISSUER, AUTH_SERVER)
        with pytest.raises(TokenRequestFailed):
            await orchestrator.run(attempt, _offer_string(OFFER))
        assert attempt.state is IssuanceState.FAILED
        assert attempt.authorization_code == "XYZ"
        assert stub.calls(CREDENTIAL_ENDPOINT) == []

    async def test_attempt_is_not_rerun(
        self,
        orchestrator: IssuanceOrchestrator,
        identity: SigningIdentity,
        happy_servers: StubRouter,
    ) -> None:
        attempt = orchestrator.new_attempt(identity, ISSUER, AUTH_SERVER)
        await orchestrator.run(attempt, _offer_string(OFFER))
        with pytest.raises(InvalidTransition):
            await orchestrator.run(attempt, _offer_string(OFFER))

    async def test_unusable_signing_key_fails_attempt(
        self,
        orchestrator: IssuanceOrchestrator,
        identity: SigningIdentity,
        happy_servers: StubRouter,
    ) -> None:
        broken = SigningIdentity.model_construct(
            did=identity.did, private_key_pem="not a pem"
        )
        attempt = orchestrator.new_attempt(
            broken, ISSUER, AUTH_SERVER, user_pin="1234"
        )
        with pytest.raises(CredentialRequestFailed) as excinfo:
            await orchestrator.run(attempt, _offer_string(PRE_AUTH_OFFER))
        assert excinfo.value.reason is FailureReason.CONFIGURATION
        assert attempt.state is IssuanceState.FAILED
        assert attempt.error is excinfo.value
        assert attempt.is_terminal
        assert happy_servers.calls(CREDENTIAL_ENDPOINT) == []

    async def test_supplied_code_verifier_is_used(
        self,
        orchestrator: IssuanceOrchestrator,
        identity: SigningIdentity,
        happy_servers: StubRouter,
    ) -> None:
        attempt = orchestrator.new_attempt(
            identity, ISSUER, AUTH_SERVER, code_verifier="v" * 43
        )
        await orchestrator.run(attempt, _offer_string(OFFER))
        form = _form(happy_servers.calls(TOKEN_ENDPOINT)[0])
        assert form["code_verifier"] == "v" * 43


class TestDeferred:
    """Tests for deferred issuance and caller-driven resumption."""

    @pytest.fixture
    def deferred_servers(self, happy_servers: StubRouter) -> StubRouter:
        happy_servers.add(
            "POST",
            CREDENTIAL_ENDPOINT,
            httpx.Response(200, json={"acceptance_token": "ACC1"}),
        )
        return happy_servers

    async def test_deferred_then_resumed(
        self,
        orchestrator: IssuanceOrchestrator,
        identity: SigningIdentity,
        deferred_servers: StubRouter,
    ) -> None:
        attempt = await orchestrator.issue(
            _offer_string(OFFER), identity, ISSUER, AUTH_SERVER
        )
        assert attempt.state is IssuanceState.DEFERRED_PENDING
        assert attempt.credential is None

        deferred_servers.add(
            "POST",
            DEFERRED_ENDPOINT,
            httpx.Response(200, json={"format": "jwt_vc", "credential": "eyJ..."}),
        )
        response = await orchestrator.resume_deferred(attempt)
        assert response.credential == "eyJ..."
        assert attempt.state is IssuanceState.CREDENTIAL_ACQUIRED
        request = deferred_servers.calls(DEFERRED_ENDPOINT)[0]
        assert request.headers["Authorization"] == "Bearer ACC1"

    async def test_still_pending_stays_deferred(
        self,
        orchestrator: IssuanceOrchestrator,
        identity: SigningIdentity,
        deferred_servers: StubRouter,
    ) -> None:
        attempt = await orchestrator.issue(
            _offer_string(OFFER), identity, ISSUER, AUTH_SERVER
        )
        deferred_servers.add(
            "POST",
            DEFERRED_ENDPOINT,
            httpx.Response(200, json={"acceptance_token": "ACC2"}),
        )
        await orchestrator.resume_deferred(attempt)
        assert attempt.state is IssuanceState.DEFERRED_PENDING
        assert len(deferred_servers.calls(DEFERRED_ENDPOINT)) == 1

    async def test_resume_failure_fails_attempt(
        self,
        orchestrator: IssuanceOrchestrator,
        identity: SigningIdentity,
        deferred_servers: StubRouter,
    ) -> None:
        attempt = await orchestrator.issue(
            _offer_string(OFFER), identity, ISSUER, AUTH_SERVER
        )
        with pytest.raises(CredentialRequestFailed) as excinfo:
            await orchestrator.resume_deferred(attempt)
        assert excinfo.value.reason is FailureReason.NETWORK
        assert attempt.state is IssuanceState.FAILED

    async def test_missing_deferred_endpoint(
        self,
        orchestrator: IssuanceOrchestrator,
        identity: SigningIdentity,
        deferred_servers: StubRouter,
    ) -> None:
        issuer = ISSUER.model_copy(update={"deferred_credential_endpoint": None})
        attempt = await orchestrator.issue(
            _offer_string(OFFER), identity, issuer, AUTH_SERVER
        )
        with pytest.raises(CredentialRequestFailed) as excinfo:
            await orchestrator.resume_deferred(attempt)
        assert excinfo.value.reason is FailureReason.CONFIGURATION

    async def test_resume_requires_deferred_state(
        self,
        orchestrator: IssuanceOrchestrator,
        identity: SigningIdentity,
        happy_servers: StubRouter,
    ) -> None:
        attempt = await orchestrator.issue(
            _offer_string(OFFER), identity, ISSUER, AUTH_SERVER
        )
        with pytest.raises(InvalidTransition):
            await orchestrator.resume_deferred(attempt)

    async def test_resume_without_acceptance_token(
        self, orchestrator: IssuanceOrchestrator, identity: SigningIdentity
    ) -> None:
        attempt = orchestrator.new_attempt(identity, ISSUER, AUTH_SERVER)
        attempt.state = IssuanceState.DEFERRED_PENDING
        with pytest.raises(InvalidTransition):
            await orchestrator.resume_deferred(attempt)
