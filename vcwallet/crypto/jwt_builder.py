"""Holder-signed ES256 JWTs: credential proofs and id_token responses."""

from datetime import UTC, datetime, timedelta

import jwt

from vcwallet.core.settings import WalletSettings
from vcwallet.crypto.types import DecodedJWT, JWTClaims, SigningIdentity

ALGORITHM = "ES256"
PROOF_JWT_TYPE = "openid4vci-proof+jwt"
ID_TOKEN_TYPE = "JWT"

# Raised by PyJWT and cryptography when the key cannot sign.
SIGNING_ERRORS = (jwt.PyJWTError, ValueError, TypeError)


class ProofJwtBuilder:
    """Creates compact ES256 JWTs signed with a holder's DID key."""

    def __init__(self, identity: SigningIdentity, settings: WalletSettings) -> None:
        self._identity = identity
        self._proof_ttl = settings.proof_jwt_ttl
        self._id_token_ttl = settings.id_token_ttl

    def _sign(self, claims: JWTClaims, typ: str) -> str:
        now = datetime.now(UTC).replace(microsecond=0)
        payload: dict[str, object] = {
            "iss": claims.iss,
            "aud": claims.aud,
            "iat": now,
            "exp": now + timedelta(seconds=claims.ttl_seconds),
        }
        if claims.sub is not None:
            payload["sub"] = claims.sub
        if claims.nonce is not None:
            payload["nonce"] = claims.nonce
        return jwt.encode(
            payload,
            self._identity.private_key_pem,
            algorithm=ALGORITHM,
            headers={"typ": typ, "kid": self._identity.key_id},
        )

    def build_proof_jwt(self, audience: str, nonce: str | None) -> str:
        """Proof of possession for a credential request."""
        claims = JWTClaims(
            iss=self._identity.did,
            aud=audience,
            nonce=nonce,
            ttl_seconds=self._proof_ttl,
        )
        return self._sign(claims, PROOF_JWT_TYPE)

    def build_id_token(self, audience: str, nonce: str | None) -> str:
        """Self-issued id_token answering an authorization server challenge."""
        claims = JWTClaims(
            iss=self._identity.did,
            sub=self._identity.did,
            aud=audience,
            nonce=nonce,
            ttl_seconds=self._id_token_ttl,
        )
        return self._sign(claims, ID_TOKEN_TYPE)


def decode_holder_jwt(token: str, public_key_pem: str, audience: str) -> DecodedJWT:
    """Verify and decode a JWT produced by :class:`ProofJwtBuilder`."""
    raw = jwt.decode(
        token,
        public_key_pem,
        algorithms=[ALGORITHM],
        audience=audience,
    )
    return DecodedJWT.model_validate(raw)
