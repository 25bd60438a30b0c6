"""Wire and state types for the OID4VCI issuance flow."""

from pydantic import BaseModel, ConfigDict, Field, model_validator

PRE_AUTHORIZED_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:pre-authorized_code"
AUTHORIZATION_CODE_GRANT_TYPE = "authorization_code"


class CredentialDescriptor(BaseModel):
    """One credential type offered by the issuer."""

    model_config = ConfigDict(frozen=True, extra="allow")

    format: str | None = None
    types: list[str] = Field(default_factory=list)
    trust_framework: dict[str, object] | None = None


class AuthorizationCodeGrantOffer(BaseModel):
    """Offer grant for the authorization-code flow."""

    model_config = ConfigDict(frozen=True, extra="allow")

    issuer_state: str | None = None


class PreAuthorizedCodeGrantOffer(BaseModel):
    """Offer grant for the pre-authorized-code flow."""

    model_config = ConfigDict(frozen=True, extra="allow", populate_by_name=True)

    pre_authorized_code: str = Field(alias="pre-authorized_code")
    user_pin_required: bool = False


class OfferGrants(BaseModel):
    """Grants section of a credential offer."""

    model_config = ConfigDict(frozen=True, extra="allow", populate_by_name=True)

    authorization_code: AuthorizationCodeGrantOffer | None = None
    pre_authorized_code: PreAuthorizedCodeGrantOffer | None = Field(
        default=None, alias=PRE_AUTHORIZED_GRANT_TYPE
    )


class CredentialOffer(BaseModel):
    """A resolved credential offer."""

    model_config = ConfigDict(frozen=True, extra="allow")

    credential_issuer: str
    credentials: list[CredentialDescriptor] = Field(min_length=1)
    grants: OfferGrants | None = None

    @property
    def issuer_state(self) -> str | None:
        if self.grants is None or self.grants.authorization_code is None:
            return None
        return self.grants.authorization_code.issuer_state

    @property
    def pre_authorized_grant(self) -> PreAuthorizedCodeGrantOffer | None:
        if self.grants is None:
            return None
        return self.grants.pre_authorized_code


class AuthorizationServerConfig(BaseModel):
    """Subset of the authorization server's well-known configuration."""

    model_config = ConfigDict(frozen=True, extra="allow")

    authorization_endpoint: str | None = None
    token_endpoint: str | None = None


class IssuerConfig(BaseModel):
    """Subset of the credential issuer's well-known configuration."""

    model_config = ConfigDict(frozen=True, extra="allow")

    credential_issuer: str
    credential_endpoint: str
    deferred_credential_endpoint: str | None = None
    authorization_server: str | None = None


class TokenResponse(BaseModel):
    """OAuth token endpoint response."""

    model_config = ConfigDict(extra="allow")

    access_token: str = Field(min_length=1)
    token_type: str = "Bearer"
    expires_in: int | None = None
    refresh_token: str | None = None
    c_nonce: str | None = None
    c_nonce_expires_in: int | None = None


class CredentialResponse(BaseModel):
    """Credential endpoint response, either issued or deferred."""

    model_config = ConfigDict(extra="allow")

    format: str | None = None
    credential: str | None = None
    acceptance_token: str | None = None
    is_deferred: bool | None = None
    is_pin_required: bool = False
    c_nonce: str | None = None

    @model_validator(mode="after")
    def _check_deferred(self) -> "CredentialResponse":
        deferred = bool(self.acceptance_token)
        if self.is_deferred is None:
            self.is_deferred = deferred
        if self.is_deferred != deferred:
            raise ValueError("is_deferred must match presence of acceptance_token")
        if deferred and self.credential:
            raise ValueError("deferred response must not carry a credential")
        if not deferred and not self.credential:
            raise ValueError("response carries neither credential nor acceptance_token")
        return self


class CodeRedirect(BaseModel):
    """Authorization response carrying the code directly."""

    code: str


class IdTokenRequest(BaseModel):
    """Authorization response asking the holder for an id_token."""

    state: str | None = None
    nonce: str | None = None
    redirect_uri: str | None = None


RedirectOutcome = CodeRedirect | IdTokenRequest
