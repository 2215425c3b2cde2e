"""
Domain events system

Domain events represent important business events that can be published
and subscribed to by multiple parts of the system. Notification delivery
hangs off these events; a failing handler is logged and never reaches the
code that published the event.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
import uuid
import structlog

logger = structlog.get_logger(__name__)


class DomainEvent:
    """Base class for domain events"""

    def __init__(self, event_id: uuid.UUID = None):
        self.event_id = event_id or uuid.uuid4()
        self.occurred_at = datetime.utcnow()

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary"""
        return {
            "event_id": str(self.event_id),
            "occurred_at": self.occurred_at.isoformat(),
            "event_type": self.__class__.__name__
        }


class CaseCreated(DomainEvent):
    """Event fired when either side of a relationship opens a case"""

    def __init__(
        self,
        case_id: str,
        client_id: str,
        vendor_id: str,
        created_by_user_id: str,
        created_by_context: str,
        subject: str,
        event_id: uuid.UUID = None
    ):
        super().__init__(event_id)
        self.case_id = case_id
        self.client_id = client_id
        self.vendor_id = vendor_id
        self.created_by_user_id = created_by_user_id
        self.created_by_context = created_by_context
        self.subject = subject

    @property
    def counterparty_id(self) -> str:
        """Facet on the other side from the creator"""
        return self.vendor_id if self.created_by_context == "client" else self.client_id

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "case_id": self.case_id,
            "client_id": self.client_id,
            "vendor_id": self.vendor_id,
            "created_by_user_id": self.created_by_user_id,
            "created_by_context": self.created_by_context,
            "subject": self.subject
        })
        return data


class CaseStatusChanged(DomainEvent):
    """Event fired after a case transition has been committed"""

    def __init__(
        self,
        case_id: str,
        client_id: str,
        vendor_id: str,
        from_status: str,
        to_status: str,
        changed_by_user_id: str,
        changed_by_tenant_id: str,
        changed_by_context: str,
        event_id: uuid.UUID = None
    ):
        super().__init__(event_id)
        self.case_id = case_id
        self.client_id = client_id
        self.vendor_id = vendor_id
        self.from_status = from_status
        self.to_status = to_status
        self.changed_by_user_id = changed_by_user_id
        self.changed_by_tenant_id = changed_by_tenant_id
        self.changed_by_context = changed_by_context

    @property
    def counterparty_id(self) -> str:
        return self.vendor_id if self.changed_by_context == "client" else self.client_id

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "case_id": self.case_id,
            "client_id": self.client_id,
            "vendor_id": self.vendor_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "changed_by_user_id": self.changed_by_user_id,
            "changed_by_tenant_id": self.changed_by_tenant_id,
            "changed_by_context": self.changed_by_context
        })
        return data


class CaseMessagePosted(DomainEvent):
    """Event fired when a message or note is appended to a case timeline"""

    def __init__(
        self,
        case_id: str,
        message_id: str,
        recipient_id: str,
        sender_user_id: str,
        sender_context: str,
        message_type: str,
        event_id: uuid.UUID = None
    ):
        super().__init__(event_id)
        self.case_id = case_id
        self.message_id = message_id
        self.recipient_id = recipient_id
        self.sender_user_id = sender_user_id
        self.sender_context = sender_context
        self.message_type = message_type

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "case_id": self.case_id,
            "message_id": self.message_id,
            "recipient_id": self.recipient_id,
            "sender_user_id": self.sender_user_id,
            "sender_context": self.sender_context,
            "message_type": self.message_type
        })
        return data


class EvidenceAttached(DomainEvent):
    """Event fired when a file has been stored and linked to a case"""

    def __init__(
        self,
        case_id: str,
        evidence_id: str,
        recipient_id: str,
        uploaded_by_user_id: str,
        file_name: str,
        event_id: uuid.UUID = None
    ):
        super().__init__(event_id)
        self.case_id = case_id
        self.evidence_id = evidence_id
        self.recipient_id = recipient_id
        self.uploaded_by_user_id = uploaded_by_user_id
        self.file_name = file_name

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "case_id": self.case_id,
            "evidence_id": self.evidence_id,
            "recipient_id": self.recipient_id,
            "uploaded_by_user_id": self.uploaded_by_user_id,
            "file_name": self.file_name
        })
        return data


class PaymentStatusChanged(DomainEvent):
    """Event fired when a payer or payee moves a payment to a new status"""

    def __init__(
        self,
        payment_id: str,
        from_id: str,
        to_id: str,
        from_status: str,
        to_status: str,
        changed_by_context: str,
        event_id: uuid.UUID = None
    ):
        super().__init__(event_id)
        self.payment_id = payment_id
        self.from_id = from_id
        self.to_id = to_id
        self.from_status = from_status
        self.to_status = to_status
        self.changed_by_context = changed_by_context

    @property
    def counterparty_id(self) -> str:
        return self.to_id if self.changed_by_context == "client" else self.from_id

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "payment_id": self.payment_id,
            "from_id": self.from_id,
            "to_id": self.to_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "changed_by_context": self.changed_by_context
        })
        return data


class InviteCreated(DomainEvent):
    """Event fired when a client tenant invites a vendor by email"""

    def __init__(
        self,
        invite_token: str,
        inviting_tenant_id: str,
        invitee_email: str,
        invitee_name: Optional[str],
        expires_at: datetime,
        event_id: uuid.UUID = None
    ):
        super().__init__(event_id)
        self.invite_token = invite_token
        self.inviting_tenant_id = inviting_tenant_id
        self.invitee_email = invitee_email
        self.invitee_name = invitee_name
        self.expires_at = expires_at

    def to_dict(self) -> Dict[str, Any]:
        # invite_token omitted
        data = super().to_dict()
        data.update({
            "inviting_tenant_id": self.inviting_tenant_id,
            "invitee_email": self.invitee_email,
            "invitee_name": self.invitee_name,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None
        })
        return data


class InviteAccepted(DomainEvent):
    """Event fired when an invitation produces an active relationship"""

    def __init__(
        self,
        relationship_id: str,
        client_id: str,
        vendor_id: str,
        inviting_tenant_id: str,
        accepting_tenant_id: str,
        event_id: uuid.UUID = None
    ):
        super().__init__(event_id)
        self.relationship_id = relationship_id
        self.client_id = client_id
        self.vendor_id = vendor_id
        self.inviting_tenant_id = inviting_tenant_id
        self.accepting_tenant_id = accepting_tenant_id

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "relationship_id": self.relationship_id,
            "client_id": self.client_id,
            "vendor_id": self.vendor_id,
            "inviting_tenant_id": self.inviting_tenant_id,
            "accepting_tenant_id": self.accepting_tenant_id
        })
        return data


class RelationshipStatusChanged(DomainEvent):
    """Event fired when a relationship is suspended, reactivated or terminated"""

    def __init__(
        self,
        relationship_id: str,
        client_id: str,
        vendor_id: str,
        from_status: str,
        to_status: str,
        event_id: uuid.UUID = None
    ):
        super().__init__(event_id)
        self.relationship_id = relationship_id
        self.client_id = client_id
        self.vendor_id = vendor_id
        self.from_status = from_status
        self.to_status = to_status

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "relationship_id": self.relationship_id,
            "client_id": self.client_id,
            "vendor_id": self.vendor_id,
            "from_status": self.from_status,
            "to_status": self.to_status
        })
        return data


class ContextSwitched(DomainEvent):
    """Event fired when a session's active context changes"""

    def __init__(
        self,
        session_id: str,
        tenant_id: str,
        user_id: str,
        active_context: str,
        active_context_id: str,
        active_counterparty: Optional[str] = None,
        event_id: uuid.UUID = None
    ):
        super().__init__(event_id)
        self.session_id = session_id
        self.tenant_id = tenant_id
        self.user_id = user_id
        self.active_context = active_context
        self.active_context_id = active_context_id
        self.active_counterparty = active_counterparty

    def to_dict(self) -> Dict[str, Any]:
        # session_id omitted
        data = super().to_dict()
        data.update({
            "tenant_id": self.tenant_id,
            "user_id": self.user_id,
            "active_context": self.active_context,
            "active_context_id": self.active_context_id,
            "active_counterparty": self.active_counterparty
        })
        return data


class EventBus:
    """Simple in-memory event bus for publishing domain events"""

    def __init__(self):
        self._subscribers: Dict[str, List[Callable]] = {}

    def subscribe(self, event_type: str, handler: Callable):
        """Subscribe to a specific event type"""
        if event_type not in self._subscribers:
            self._subscribers[event_type] = []
        self._subscribers[event_type].append(handler)
        logger.debug(f"Subscribed handler to event type: {event_type}")

    def unsubscribe(self, event_type: str, handler: Callable):
        """Unsubscribe from an event type"""
        if event_type in self._subscribers:
            self._subscribers[event_type].remove(handler)
            logger.debug(f"Unsubscribed handler from event type: {event_type}")

    async def publish(self, event: DomainEvent):
        """Publish an event to all subscribers"""
        event_type = event.__class__.__name__
        handlers = self._subscribers.get(event_type, [])

        if not handlers:
            logger.debug(f"No subscribers for event type: {event_type}")
            return

        logger.info(f"Publishing event {event_type}: {event.event_id}")

        for handler in handlers:
            try:
                await handler(event)
            except Exception as e:
                logger.error(f"Error in event handler for {event_type}: {e}", exc_info=True)

    def clear_subscribers(self):
        """Clear all subscribers (useful for testing)"""
        self._subscribers.clear()
        logger.debug("Cleared all event subscribers")


# Global event bus instance
event_bus = EventBus()
