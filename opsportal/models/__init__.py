from opsportal.models.tenant import Tenant, TenantStatus, TenantFacets, ContextRole
from opsportal.models.user import User, UserRole, UserStatus
from opsportal.models.relationship import TenantRelationship, RelationshipStatus
from opsportal.models.invitation import RelationshipInvitation, InvitationStatus
from opsportal.models.portal_session import PortalSession
from opsportal.models.case import (
    Case,
    CaseStatus,
    CasePriority,
    CaseType,
    STATUS_TRANSITIONS,
    TRANSITION_LABELS,
    validate_transition,
    available_transitions,
)
from opsportal.models.case_timeline import CaseTimelineEntry, SenderContext, TimelineMessageType
from opsportal.models.case_evidence import CaseEvidence, EvidenceType
from opsportal.models.payment import Payment, PaymentStatus
from opsportal.models.invoice import Invoice, InvoiceStatus
