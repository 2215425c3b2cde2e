"""
Portal error taxonomy

Services raise these typed errors; the API layer renders them through a
single exception handler without adding detail. Record-level ownership
failures are always NotFound, never a distinct "forbidden".
"""

from typing import Any, Dict, Optional

from fastapi import status


class PortalError(Exception):
    """Base class for errors that map onto an HTTP response"""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_code: str = "PORTAL_ERROR"
    default_message: str = "Request failed"

    def __init__(
        self,
        message: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message or self.default_message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to the response body"""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class AuthenticationFailure(PortalError):
    """Bad or missing credentials. The message never hints at user existence."""

    status_code = status.HTTP_401_UNAUTHORIZED
    default_code = "AUTHENTICATION_FAILED"
    default_message = "Invalid credentials"


class ReAuthenticationRequired(PortalError):
    """Provider tokens cannot be refreshed; the caller must log in again"""

    status_code = status.HTTP_401_UNAUTHORIZED
    default_code = "RE_AUTH_REQUIRED"
    default_message = "Please log in again to continue."

    def __init__(self, reason: str, message: Optional[str] = None):
        self.reason = reason
        super().__init__(message, details={"reason": reason})


class AuthorizationDenied(PortalError):
    """The tenant does not hold the requested role at all"""

    status_code = status.HTTP_403_FORBIDDEN
    default_code = "AUTHORIZATION_DENIED"
    default_message = "You do not have access to this context"


class ContextSelectionRequired(PortalError):
    """A dual-context tenant must pick client or vendor before continuing"""

    status_code = status.HTTP_409_CONFLICT
    default_code = "CONTEXT_SELECTION_REQUIRED"
    default_message = "Context selection required"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message, details={"redirect": "/portal"})


class NotFound(PortalError):
    """Record absent or not owned by the requester. Both look identical."""

    status_code = status.HTTP_404_NOT_FOUND
    default_code = "NOT_FOUND"

    def __init__(self, resource: str):
        self.resource = resource
        super().__init__(f"{resource} not found")


class InvalidTransition(PortalError):
    """Illegal edge in a state machine. Names the pair, nothing else."""

    status_code = status.HTTP_409_CONFLICT
    default_code = "INVALID_TRANSITION"

    def __init__(self, from_status: str, to_status: str, message: str):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            message,
            details={"from_status": from_status, "to_status": to_status},
        )


class InvalidInvitation(PortalError):
    """Invitation already used, revoked or past its expiry"""

    status_code = status.HTTP_410_GONE
    default_code = "INVALID_INVITATION"
    default_message = "Invitation is no longer valid"


class RelationshipConflict(PortalError):
    """Relationship graph invariant would be violated"""

    status_code = status.HTTP_409_CONFLICT
    default_code = "RELATIONSHIP_CONFLICT"


class ClaimsSyncFailure(PortalError):
    """Claims were written but no claim-bearing token could be obtained"""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_code = "CLAIMS_SYNC_FAILED"
    default_message = "Login succeeded but session could not be established. Please try again."


class RateLimited(PortalError):
    """Request budget for this key is exhausted"""

    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_code = "RATE_LIMITED"
    default_message = "Too many requests. Please wait before trying again."

    def __init__(self, retry_after: int, message: Optional[str] = None):
        self.retry_after = retry_after
        super().__init__(message, details={"retry_after": retry_after})


class EvidenceRejected(PortalError):
    """Uploaded file fails size or type constraints"""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_code = "EVIDENCE_REJECTED"


class EvidenceUploadFailed(PortalError):
    """Storage backend refused or failed the upload"""

    status_code = status.HTTP_502_BAD_GATEWAY
    default_code = "EVIDENCE_UPLOAD_FAILED"
    default_message = "Evidence could not be stored"


class IdentityProviderError(PortalError):
    """Transport or API failure talking to the identity provider"""

    status_code = status.HTTP_502_BAD_GATEWAY
    default_code = "IDENTITY_PROVIDER_ERROR"
    default_message = "Identity provider request failed"

    def __init__(self, message: Optional[str] = None, provider_status: Optional[int] = None):
        self.provider_status = provider_status
        super().__init__(message)
