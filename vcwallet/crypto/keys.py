"""P-256 signing key generation, JWK export, and did:key derivation."""

import base64
import json
from enum import StrEnum

import base58
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.ec import EllipticCurvePublicKey

from vcwallet.crypto.types import ECJWKEntry, SigningIdentity

P256_COORDINATE_SIZE = 32
P256_PUB_MULTICODEC = 0x1200
JWK_JCS_PUB_MULTICODEC = 0xEB51


class DidKeyProfile(StrEnum):
    """Multicodec profile used to encode the key into a did:key."""

    P256 = "p256-pub"
    JWK_JCS = "jwk_jcs-pub"


def generate_ec_keypair() -> tuple[str, str]:
    """Generate a P-256 keypair. Returns (private_pem, public_pem)."""
    private_key = ec.generate_private_key(ec.SECP256R1())
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()
    public_pem = (
        private_key.public_key()
        .public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        .decode()
    )
    return private_pem, public_pem


def public_key_from_private(private_key_pem: str) -> str:
    """Derive the PEM public key for a PEM private key."""
    private_key = serialization.load_pem_private_key(
        private_key_pem.encode(), password=None
    )
    return (
        private_key.public_key()
        .public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        .decode()
    )


def _load_p256_public_key(public_key_pem: str) -> EllipticCurvePublicKey:
    loaded = serialization.load_pem_public_key(public_key_pem.encode())
    if not isinstance(loaded, EllipticCurvePublicKey) or not isinstance(
        loaded.curve, ec.SECP256R1
    ):
        raise ValueError("Expected a P-256 public key")
    return loaded


def _int_to_base64url(value: int) -> str:
    """Encode a fixed-size curve coordinate as base64url without padding."""
    raw = value.to_bytes(P256_COORDINATE_SIZE, byteorder="big")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()


def public_jwk(public_key_pem: str) -> ECJWKEntry:
    """Convert a PEM P-256 public key to JWK format."""
    numbers = _load_p256_public_key(public_key_pem).public_numbers()
    return ECJWKEntry(x=_int_to_base64url(numbers.x), y=_int_to_base64url(numbers.y))


def _varint(value: int) -> bytes:
    """Unsigned varint, as used for multicodec prefixes."""
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def did_key_from_public_key(
    public_key_pem: str, profile: DidKeyProfile = DidKeyProfile.JWK_JCS
) -> str:
    """Encode a P-256 public key as a did:key identifier."""
    if profile == DidKeyProfile.P256:
        raw = _load_p256_public_key(public_key_pem).public_bytes(
            encoding=serialization.Encoding.X962,
            format=serialization.PublicFormat.CompressedPoint,
        )
        prefixed = _varint(P256_PUB_MULTICODEC) + raw
    else:
        jwk = public_jwk(public_key_pem).model_dump()
        canonical = json.dumps(jwk, sort_keys=True, separators=(",", ":"))
        prefixed = _varint(JWK_JCS_PUB_MULTICODEC) + canonical.encode()
    return "did:key:z" + base58.b58encode(prefixed).decode()


def generate_signing_identity(
    profile: DidKeyProfile = DidKeyProfile.JWK_JCS,
) -> SigningIdentity:
    """Create a fresh key and the did:key bound to it."""
    private_pem, public_pem = generate_ec_keypair()
    return SigningIdentity(
        did=did_key_from_public_key(public_pem, profile),
        private_key_pem=private_pem,
    )
