"""Wallet settings loaded from environment variables."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

REDIRECT_URI_DEFAULT = "http://localhost:8080"
CREDENTIAL_FORMAT_DEFAULT = "jwt_vc"
PROOF_JWT_TTL_DEFAULT = 86_400
ID_TOKEN_TTL_DEFAULT = 3600
HTTP_TIMEOUT_DEFAULT = 30.0


class WalletSettings(BaseSettings):
    """Holder-side issuance settings."""

    model_config = SettingsConfigDict(env_prefix="WALLET_")

    redirect_uri: str = REDIRECT_URI_DEFAULT
    credential_format: str = CREDENTIAL_FORMAT_DEFAULT
    proof_jwt_ttl: int = Field(default=PROOF_JWT_TTL_DEFAULT, gt=0)
    id_token_ttl: int = Field(default=ID_TOKEN_TTL_DEFAULT, gt=0)
    http_timeout: float = Field(default=HTTP_TIMEOUT_DEFAULT, gt=0)
    user_agent: str = "vcwallet/0.1.0"
