"""Type definitions for signing identities, JWKs, and JWT claims."""

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from pydantic import BaseModel, ConfigDict, Field, field_validator


class SigningIdentity(BaseModel):
    """A DID and the P-256 private key that controls it."""

    model_config = ConfigDict(frozen=True)

    did: str
    private_key_pem: str

    @field_validator("did")
    @classmethod
    def _check_did(cls, value: str) -> str:
        parts = value.split(":", 2)
        if len(parts) != 3 or parts[0] != "did" or not all(parts[1:]):
            raise ValueError(f"Not a DID: {value!r}")
        return value

    @field_validator("private_key_pem")
    @classmethod
    def _check_private_key(cls, value: str) -> str:
        try:
            key = serialization.load_pem_private_key(value.encode(), password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
            raise ValueError(f"Unusable private key: {exc}") from exc
        if not isinstance(key, ec.EllipticCurvePrivateKey) or not isinstance(
            key.curve, ec.SECP256R1
        ):
            raise ValueError("Expected a P-256 private key")
        return value

    @property
    def method_specific_id(self) -> str:
        """Everything after ``did:<method>:``."""
        return self.did.split(":", 2)[2]

    @property
    def key_id(self) -> str:
        """Verification method id used as the JWT ``kid``."""
        return f"{self.did}#{self.method_specific_id}"


class ECJWKEntry(BaseModel):
    """Public EC key in JWK form."""

    kty: str = "EC"
    crv: str = "P-256"
    x: str
    y: str


class JWTClaims(BaseModel):
    """Claims bundle for a holder-signed JWT."""

    iss: str
    aud: str
    nonce: str | None = None
    sub: str | None = None
    ttl_seconds: int = Field(default=3600, gt=0)


class DecodedJWT(BaseModel):
    """Decoded holder JWT claims."""

    model_config = ConfigDict(extra="allow")

    iss: str = ""
    sub: str | None = None
    aud: str = ""
    iat: int = 0
    exp: int = 0
    nonce: str | None = None
