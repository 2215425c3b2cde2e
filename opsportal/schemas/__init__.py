"""
Schemas module
"""

from opsportal.schemas.auth import (
    AcceptInviteRequest,
    CompleteProfileRequest,
    SignUpRequest,
    ForgotPasswordRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    OAuthExchangeRequest,
    OAuthExchangeResponse,
    RealtimeTokenResponse,
    SessionUserResponse,
)
from opsportal.schemas.case import (
    CaseCreate,
    CaseDetailResponse,
    CaseListResponse,
    CaseMessageCreate,
    CaseRead,
    CaseTransitionRequest,
    CaseTransitionResponse,
    EvidenceRead,
    EvidenceUrlResponse,
    TimelineEntryRead,
    TransitionOption,
)
from opsportal.schemas.finance import InvoiceRead, PaymentRead, PaymentStatusUpdate
from opsportal.schemas.portal import ContextResponse, CounterpartyRead, SwitchContextRequest
from opsportal.schemas.relationship import InviteCreate, InviteRead, RelationshipRead

__all__ = [
    "AcceptInviteRequest",
    "CaseCreate",
    "CaseDetailResponse",
    "CaseListResponse",
    "CaseMessageCreate",
    "CaseRead",
    "CaseTransitionRequest",
    "CaseTransitionResponse",
    "CompleteProfileRequest",
    "SignUpRequest",
    "ContextResponse",
    "CounterpartyRead",
    "EvidenceRead",
    "EvidenceUrlResponse",
    "ForgotPasswordRequest",
    "InviteCreate",
    "InviteRead",
    "InvoiceRead",
    "LoginRequest",
    "LoginResponse",
    "MessageResponse",
    "OAuthExchangeRequest",
    "OAuthExchangeResponse",
    "PaymentRead",
    "PaymentStatusUpdate",
    "RealtimeTokenResponse",
    "RelationshipRead",
    "SessionUserResponse",
    "SwitchContextRequest",
    "TimelineEntryRead",
    "TransitionOption",
]
