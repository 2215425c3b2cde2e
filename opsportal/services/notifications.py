"""
Notification dispatch

Turns committed domain events into notifications for the counterparty. How a
notification is delivered (email, push, in-app) belongs to the dispatcher
implementation; the default one records them to the log.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import structlog

from opsportal.core.events import (
    CaseCreated,
    CaseMessagePosted,
    CaseStatusChanged,
    EventBus,
    EvidenceAttached,
    InviteAccepted,
    InviteCreated,
    PaymentStatusChanged,
    RelationshipStatusChanged,
)

logger = structlog.get_logger(__name__)


class NotificationDispatcher(ABC):
    """Delivery channel for portal notifications"""

    @abstractmethod
    async def notify(self, recipient: str, notification_type: str, payload: Dict[str, Any]) -> None:
        """
        Args:
            recipient: Facet id, tenant id or email address to notify
            notification_type: e.g. case_status_changed, payment_completed
            payload: Event data for templating
        """


class LoggingNotificationDispatcher(NotificationDispatcher):
    """Records notifications in the structured log"""

    async def notify(self, recipient: str, notification_type: str, payload: Dict[str, Any]) -> None:
        logger.info("Notification queued", recipient=recipient, notification_type=notification_type)


class RecordingNotificationDispatcher(NotificationDispatcher):
    """Keeps notifications in memory, for tests and local development"""

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []

    async def notify(self, recipient: str, notification_type: str, payload: Dict[str, Any]) -> None:
        self.sent.append({"recipient": recipient, "type": notification_type, "payload": payload})

    def of_type(self, notification_type: str) -> List[Dict[str, Any]]:
        return [n for n in self.sent if n["type"] == notification_type]


class NotificationHandlers:
    """Event bus subscribers that fan events out to the dispatcher"""

    def __init__(self, dispatcher: NotificationDispatcher):
        self.dispatcher = dispatcher

    async def on_case_created(self, event: CaseCreated):
        await self.dispatcher.notify(event.counterparty_id, "case_created", event.to_dict())

    async def on_case_status_changed(self, event: CaseStatusChanged):
        await self.dispatcher.notify(
            event.counterparty_id, f"case_{event.to_status}", event.to_dict()
        )

    async def on_case_message_posted(self, event: CaseMessagePosted):
        await self.dispatcher.notify(event.recipient_id, "case_message", event.to_dict())

    async def on_evidence_attached(self, event: EvidenceAttached):
        await self.dispatcher.notify(event.recipient_id, "case_evidence", event.to_dict())

    async def on_payment_status_changed(self, event: PaymentStatusChanged):
        await self.dispatcher.notify(
            event.counterparty_id, f"payment_{event.to_status}", event.to_dict()
        )

    async def on_invite_created(self, event: InviteCreated):
        payload = event.to_dict()
        payload["invite_token"] = event.invite_token
        await self.dispatcher.notify(event.invitee_email, "relationship_invite", payload)

    async def on_invite_accepted(self, event: InviteAccepted):
        await self.dispatcher.notify(event.inviting_tenant_id, "vendor_invite_accepted", event.to_dict())

    async def on_relationship_status_changed(self, event: RelationshipStatusChanged):
        payload = event.to_dict()
        await self.dispatcher.notify(event.client_id, f"relationship_{event.to_status}", payload)
        await self.dispatcher.notify(event.vendor_id, f"relationship_{event.to_status}", payload)

    def subscriptions(self):
        return [
            ("CaseCreated", self.on_case_created),
            ("CaseStatusChanged", self.on_case_status_changed),
            ("CaseMessagePosted", self.on_case_message_posted),
            ("EvidenceAttached", self.on_evidence_attached),
            ("PaymentStatusChanged", self.on_payment_status_changed),
            ("InviteCreated", self.on_invite_created),
            ("InviteAccepted", self.on_invite_accepted),
            ("RelationshipStatusChanged", self.on_relationship_status_changed),
        ]


def register_notification_handlers(
    bus: EventBus,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> NotificationHandlers:
    """Subscribe notification handlers for every event that concerns a counterparty"""
    handlers = NotificationHandlers(dispatcher or LoggingNotificationDispatcher())
    for event_type, handler in handlers.subscriptions():
        bus.subscribe(event_type, handler)
    return handlers
