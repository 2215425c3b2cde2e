"""
Tests for the case lifecycle: transitions, timeline, messages
"""

import pytest
from itertools import product

from sqlmodel.ext.asyncio.session import AsyncSession

from opsportal.core.errors import AuthorizationDenied, InvalidTransition, NotFound
from opsportal.models import (
    Case,
    CaseStatus,
    SenderContext,
    TimelineMessageType,
    available_transitions,
    validate_transition,
)
from opsportal.services import access_guard, case_lifecycle

WORKFLOW = [
    CaseStatus.OPEN,
    CaseStatus.IN_PROGRESS,
    CaseStatus.RESOLVED,
    CaseStatus.CLOSED,
    CaseStatus.CANCELLED,
]

ALLOWED = {
    (CaseStatus.OPEN, CaseStatus.IN_PROGRESS),
    (CaseStatus.IN_PROGRESS, CaseStatus.RESOLVED),
    (CaseStatus.RESOLVED, CaseStatus.CLOSED),
}


@pytest.mark.parametrize("from_status,to_status", list(product(WORKFLOW, WORKFLOW)))
def test_validate_transition_table(from_status, to_status):
    """Only the three workflow edges are valid; every other ordered pair is rejected"""
    if (from_status, to_status) in ALLOWED:
        validate_transition(from_status, to_status)
    else:
        with pytest.raises(InvalidTransition) as exc_info:
            validate_transition(from_status, to_status)
        assert exc_info.value.details["from_status"] == from_status.value
        assert exc_info.value.details["to_status"] == to_status.value


@pytest.mark.parametrize("from_status,to_status", list(product(WORKFLOW, WORKFLOW)))
async def test_transition_case_table(db, portal_graph, from_status, to_status):
    case = await db.get(Case, portal_graph.case_id)
    case.status = from_status
    db.add(case)
    await db.commit()

    alpha = portal_graph.alpha
    if (from_status, to_status) in ALLOWED:
        result = await case_lifecycle.transition_case(
            db, portal_graph.case_id, alpha.as_client, alpha.user, to_status
        )
        assert result.from_status == from_status
        assert result.case.status == to_status
    else:
        with pytest.raises(InvalidTransition):
            await case_lifecycle.transition_case(
                db, portal_graph.case_id, alpha.as_client, alpha.user, to_status
            )
        await db.refresh(case)
        assert case.status == from_status


def test_terminal_state_message():
    with pytest.raises(InvalidTransition) as exc_info:
        validate_transition(CaseStatus.CLOSED, CaseStatus.OPEN)
    assert exc_info.value.message == "Cannot transition from 'closed' - case is in a terminal state"


def test_invalid_edge_message_names_pair_and_allowed():
    with pytest.raises(InvalidTransition) as exc_info:
        validate_transition(CaseStatus.IN_PROGRESS, CaseStatus.CLOSED)
    assert "'in_progress' -> 'closed'" in exc_info.value.message
    assert "Allowed: resolved" in exc_info.value.message


def test_unrecognized_status():
    with pytest.raises(InvalidTransition) as exc_info:
        validate_transition("archived", CaseStatus.OPEN)
    assert "not recognized" in exc_info.value.message


def test_intake_states_have_no_outbound_edges():
    for status in (CaseStatus.DRAFT, CaseStatus.PENDING_CLIENT, CaseStatus.PENDING_VENDOR, CaseStatus.ESCALATED):
        assert available_transitions(status) == []


def test_available_transitions_labels():
    assert available_transitions(CaseStatus.OPEN) == [(CaseStatus.IN_PROGRESS, "Mark In Progress")]
    assert available_transitions(CaseStatus.IN_PROGRESS) == [(CaseStatus.RESOLVED, "Mark Resolved")]
    assert available_transitions(CaseStatus.RESOLVED) == [(CaseStatus.CLOSED, "Close Case")]
    assert available_transitions(CaseStatus.CLOSED) == []


async def test_client_moves_case_to_in_progress_then_cannot_close(db, portal_graph):
    alpha = portal_graph.alpha

    result = await case_lifecycle.transition_case(
        db, portal_graph.case_id, alpha.as_client, alpha.user, CaseStatus.IN_PROGRESS
    )

    assert result.from_status == CaseStatus.OPEN
    assert result.to_status == CaseStatus.IN_PROGRESS
    assert len(result.events) == 1
    event = result.events[0]
    assert event.message_type == TimelineMessageType.STATUS_CHANGE
    assert event.sender_context == SenderContext.SYSTEM
    assert event.entry_metadata == {
        "from_status": "open",
        "to_status": "in_progress",
        "changed_by_user_id": alpha.user.user_id,
        "changed_by_tenant_id": alpha.tenant.tenant_id,
        "changed_by_context": "client",
    }

    timeline = await case_lifecycle.get_timeline(db, portal_graph.case_id, alpha.as_client)
    assert [entry.message_type for entry in timeline] == [TimelineMessageType.STATUS_CHANGE]

    with pytest.raises(InvalidTransition):
        await case_lifecycle.transition_case(
            db, portal_graph.case_id, alpha.as_client, alpha.user, CaseStatus.CLOSED
        )


async def test_unrelated_tenant_gets_not_found(db, portal_graph):
    gamma = portal_graph.gamma

    for scope in (gamma.as_client, gamma.as_vendor):
        with pytest.raises(NotFound):
            await case_lifecycle.transition_case(
                db, portal_graph.case_id, scope, gamma.user, CaseStatus.IN_PROGRESS
            )

    case = await db.get(Case, portal_graph.case_id)
    assert case.status == CaseStatus.OPEN


async def test_vendor_facet_can_transition(db, portal_graph):
    beta = portal_graph.beta
    result = await case_lifecycle.transition_case(
        db, portal_graph.case_id, beta.as_vendor, beta.user, CaseStatus.IN_PROGRESS
    )
    assert result.events[0].entry_metadata["changed_by_context"] == "vendor"


async def test_wrong_facet_of_party_gets_not_found(db, portal_graph):
    """beta is the vendor on CASE-1; acting as client it cannot see the case"""
    beta = portal_graph.beta
    with pytest.raises(NotFound):
        await case_lifecycle.transition_case(
            db, portal_graph.case_id, beta.as_client, beta.user, CaseStatus.IN_PROGRESS
        )


async def test_second_identical_transition_fails(db, portal_graph):
    alpha = portal_graph.alpha
    await case_lifecycle.transition_case(
        db, portal_graph.case_id, alpha.as_client, alpha.user, CaseStatus.IN_PROGRESS
    )
    with pytest.raises(InvalidTransition):
        await case_lifecycle.transition_case(
            db, portal_graph.case_id, alpha.as_client, alpha.user, CaseStatus.IN_PROGRESS
        )

    timeline = await case_lifecycle.get_timeline(db, portal_graph.case_id, alpha.as_client)
    assert len(timeline) == 1


async def test_overlapping_transitions_commit_once(db, portal_graph):
    """Two requests that both read the case as open: one wins, the other is rejected"""
    beta = portal_graph.beta
    async with AsyncSession(db.bind, expire_on_commit=False) as other:
        stale = await access_guard.get_case(other, portal_graph.case_id, beta.as_vendor)
        assert stale.status == CaseStatus.OPEN

        await case_lifecycle.transition_case(
            db, portal_graph.case_id, beta.as_vendor, beta.user, CaseStatus.IN_PROGRESS
        )
        with pytest.raises(InvalidTransition) as exc_info:
            await case_lifecycle.transition_case(
                other, portal_graph.case_id, beta.as_vendor, beta.user, CaseStatus.IN_PROGRESS
            )

    assert exc_info.value.details == {"from_status": "open", "to_status": "in_progress"}
    case = await db.get(Case, portal_graph.case_id)
    assert case.status == CaseStatus.IN_PROGRESS
    assert case.version == 1
    timeline = await case_lifecycle.get_timeline(db, portal_graph.case_id, beta.as_vendor)
    assert [entry.message_type for entry in timeline] == [TimelineMessageType.STATUS_CHANGE]


async def test_note_is_recorded_after_system_entry(db, portal_graph):
    beta = portal_graph.beta
    result = await case_lifecycle.transition_case(
        db,
        portal_graph.case_id,
        beta.as_vendor,
        beta.user,
        CaseStatus.IN_PROGRESS,
        note="  Driver dispatched  ",
    )

    assert [entry.message_type for entry in result.events] == [
        TimelineMessageType.STATUS_CHANGE,
        TimelineMessageType.NOTE,
    ]
    note = result.events[1]
    assert note.sender_context == SenderContext.VENDOR
    assert note.sender_context_id == beta.tenant.tenant_vendor_id
    assert note.body == "Driver dispatched"


async def test_blank_note_is_ignored(db, portal_graph):
    alpha = portal_graph.alpha
    result = await case_lifecycle.transition_case(
        db, portal_graph.case_id, alpha.as_client, alpha.user, CaseStatus.IN_PROGRESS, note="   "
    )
    assert len(result.events) == 1


async def test_resolve_and_close_stamp_actor(db, portal_graph):
    alpha, beta = portal_graph.alpha, portal_graph.beta
    await case_lifecycle.transition_case(db, portal_graph.case_id, beta.as_vendor, beta.user, CaseStatus.IN_PROGRESS)
    resolved = await case_lifecycle.transition_case(
        db, portal_graph.case_id, beta.as_vendor, beta.user, CaseStatus.RESOLVED
    )
    assert resolved.case.resolved_by == beta.user.user_id
    assert resolved.case.resolved_at is not None
    assert resolved.case.closed_at is None

    closed = await case_lifecycle.transition_case(
        db, portal_graph.case_id, alpha.as_client, alpha.user, CaseStatus.CLOSED
    )
    assert closed.case.closed_by == alpha.user.user_id
    assert closed.case.available_transitions() == []


async def test_transition_notifies_counterparty(db, portal_graph, notifications):
    alpha = portal_graph.alpha
    await case_lifecycle.transition_case(
        db, portal_graph.case_id, alpha.as_client, alpha.user, CaseStatus.IN_PROGRESS
    )

    sent = notifications.of_type("case_in_progress")
    assert len(sent) == 1
    assert sent[0]["recipient"] == portal_graph.beta.tenant.tenant_vendor_id


async def test_create_case_requires_active_relationship(db, portal_graph):
    gamma, beta = portal_graph.gamma, portal_graph.beta
    with pytest.raises(AuthorizationDenied):
        await case_lifecycle.create_case(
            db,
            gamma.as_client,
            gamma.user,
            counterparty_facet_id=beta.tenant.tenant_vendor_id,
            subject="Unsolicited",
        )


async def test_vendor_can_open_case(db, portal_graph, notifications):
    alpha, beta = portal_graph.alpha, portal_graph.beta
    case = await case_lifecycle.create_case(
        db,
        beta.as_vendor,
        beta.user,
        counterparty_facet_id=alpha.tenant.tenant_client_id,
        subject="  Invoice 88 unpaid  ",
    )

    assert case.client_id == alpha.tenant.tenant_client_id
    assert case.vendor_id == beta.tenant.tenant_vendor_id
    assert case.status == CaseStatus.OPEN
    assert case.subject == "Invoice 88 unpaid"
    assert notifications.of_type("case_created")[0]["recipient"] == alpha.tenant.tenant_client_id


async def test_add_message_notifies_other_side(db, portal_graph, notifications):
    alpha = portal_graph.alpha
    entry = await case_lifecycle.add_message(
        db, portal_graph.case_id, alpha.as_client, alpha.user, "Any update?"
    )

    assert entry.sender_context == SenderContext.CLIENT
    assert entry.message_type == TimelineMessageType.MESSAGE
    assert notifications.of_type("case_message")[0]["recipient"] == portal_graph.beta.tenant.tenant_vendor_id


async def test_add_message_cannot_fake_status_change(db, portal_graph):
    alpha = portal_graph.alpha
    with pytest.raises(ValueError):
        await case_lifecycle.add_message(
            db,
            portal_graph.case_id,
            alpha.as_client,
            alpha.user,
            "closed",
            TimelineMessageType.STATUS_CHANGE,
        )


async def test_add_message_by_outsider_not_found(db, portal_graph):
    gamma = portal_graph.gamma
    with pytest.raises(NotFound):
        await case_lifecycle.add_message(db, portal_graph.case_id, gamma.as_client, gamma.user, "hello")


async def test_case_detail(db, portal_graph):
    alpha = portal_graph.alpha
    await case_lifecycle.add_message(db, portal_graph.case_id, alpha.as_client, alpha.user, "First")

    detail = await case_lifecycle.get_case_detail(db, portal_graph.case_id, alpha.as_client)

    assert detail.case.case_id == portal_graph.case_id
    assert [entry.body for entry in detail.timeline] == ["First"]
    assert detail.evidence == []
    assert detail.available_transitions == [(CaseStatus.IN_PROGRESS, "Mark In Progress")]
