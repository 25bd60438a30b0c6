"""PKCE code verifier and S256 challenge."""

import hashlib
import secrets
from base64 import urlsafe_b64encode

CODE_CHALLENGE_METHOD = "S256"


def generate_code_verifier() -> str:
    """Generate a fresh high-entropy code verifier (43+ characters)."""
    return secrets.token_urlsafe(48)


def generate_opaque_value() -> str:
    """Random value for ``state`` and ``nonce`` parameters."""
    return secrets.token_urlsafe(16)


def code_challenge(code_verifier: str) -> str:
    """S256 challenge: base64url(SHA256(verifier)) without padding."""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
