"""Issuance error taxonomy.

Every stage raises a subclass of :class:`IssuanceError` tagged with the stage
that failed and a coarse reason, chaining the transport or parse error that
caused it.
"""

from enum import StrEnum


class IssuanceStage(StrEnum):
    """Protocol stage an error originated from."""

    OFFER = "offer"
    AUTHORIZATION = "authorization"
    ID_TOKEN = "id_token"
    TOKEN = "token"
    CREDENTIAL = "credential"


class FailureReason(StrEnum):
    """Why a stage failed."""

    NETWORK = "network"
    HTTP_STATUS = "http_status"
    SCHEMA = "schema"
    MISSING_FIELD = "missing_field"
    CONFIGURATION = "configuration"


class IssuanceError(Exception):
    """Base error for a failed issuance stage."""

    stage: IssuanceStage = IssuanceStage.OFFER

    def __init__(self, reason: FailureReason, message: str) -> None:
        super().__init__(message)
        self.reason = reason
        self.message = message

    def __str__(self) -> str:
        return f"[{self.stage}/{self.reason}] {self.message}"


class MalformedOffer(IssuanceError):
    """The credential offer is missing, unreachable, or invalid."""

    stage = IssuanceStage.OFFER


class AuthorizationFailed(IssuanceError):
    """No authorization code could be obtained."""

    stage = IssuanceStage.AUTHORIZATION


class IdTokenExchangeFailed(AuthorizationFailed):
    """The id_token fallback did not yield an authorization code."""

    stage = IssuanceStage.ID_TOKEN


class TokenRequestFailed(IssuanceError):
    """The token endpoint did not return a usable access token."""

    stage = IssuanceStage.TOKEN


class CredentialRequestFailed(IssuanceError):
    """The credential or deferred credential request failed."""

    stage = IssuanceStage.CREDENTIAL


class InvalidTransition(ValueError):
    """An issuance attempt was driven out of order."""
