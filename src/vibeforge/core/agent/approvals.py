"""
Plan approvals.

A session has at most one pending approval. Deciding an approval and
moving the session to its next status happen in one store transaction, so
no reader sees an approved plan on a session still in plan_review.
"""

import logging
from typing import Optional

from vibeforge.core.store.models import (
    Approval,
    ApprovalStatus,
    Message,
    MessageRole,
    Session,
    SessionStatus,
    utcnow,
)
from vibeforge.core.store.protocol import RecordNotFound, RecordStore

from .errors import ApprovalConflict, ApprovalNotFound
from .models import Phase, Plan

logger = logging.getLogger(__name__)

_NEXT_STATUS = {
    ApprovalStatus.APPROVED: SessionStatus.BUILDING,
    ApprovalStatus.REJECTED: SessionStatus.IDLE,
}


async def pending_approval(store: RecordStore, session_id: str) -> Optional[Approval]:
    return await store.find_one(Approval, session_id=session_id, status=ApprovalStatus.PENDING)


async def latest_approval(store: RecordStore, session_id: str) -> Optional[Approval]:
    """Most recently created approval of a session, whatever its status."""
    approvals = await store.find(Approval, session_id=session_id)
    if not approvals:
        return None
    return sorted(approvals, key=lambda approval: approval.created_at)[-1]


async def create_pending_approval(
    store: RecordStore, session_id: str, plan: Plan
) -> tuple[Message, Approval]:
    """
    Persist a plan and its pending approval, and move the session to review.

    Args:
        store: Record store
        session_id: Session the plan belongs to
        plan: Parsed plan

    Returns:
        The plan message and the new approval

    Raises:
        ApprovalConflict: If the session already has a pending approval
        RecordNotFound: If the session does not exist
    """
    async with store.transaction() as tx:
        if await tx.get(Session, session_id) is None:
            raise RecordNotFound(Session, session_id)
        existing = await pending_approval(tx, session_id)
        if existing is not None:
            raise ApprovalConflict(f"Session {session_id} already has a pending approval: {existing.id}")

        message = await tx.insert(
            Message(
                session_id=session_id,
                role=MessageRole.ASSISTANT,
                content=plan.model_dump_json(exclude_none=True),
                phase=Phase.PLANNING.value,
                metadata={"type": "plan"},
            )
        )
        approval = await tx.insert(Approval(session_id=session_id, message_id=message.id))
        await tx.update(Session, session_id, status=SessionStatus.PLAN_REVIEW)

    logger.info("Plan %s awaiting approval in session %s", approval.id, session_id)
    return message, approval


async def _decide(
    store: RecordStore,
    session_id: str,
    approval_id: str,
    outcome: ApprovalStatus,
    reviewer_id: Optional[str],
    comment: Optional[str],
) -> Approval:
    async with store.transaction() as tx:
        approval = await tx.get(Approval, approval_id)
        if approval is None or approval.session_id != session_id:
            raise ApprovalNotFound(approval_id)

        if approval.status == outcome:
            logger.debug("Approval %s is already %s", approval_id, outcome.value)
            return approval
        if approval.status.is_terminal:
            raise ApprovalConflict(f"Approval {approval_id} is already {approval.status.value}")

        decided = await tx.update(
            Approval,
            approval_id,
            status=outcome,
            reviewer_id=reviewer_id,
            comment=comment,
            decided_at=utcnow(),
        )
        await tx.update(Session, session_id, status=_NEXT_STATUS[outcome])

    logger.info("Approval %s %s", approval_id, outcome.value)
    return decided


async def approve_plan(
    store: RecordStore,
    session_id: str,
    approval_id: str,
    reviewer_id: Optional[str] = None,
    comment: Optional[str] = None,
) -> Approval:
    """
    Approve a pending plan and move the session to building.

    Approving an already approved plan returns it unchanged.

    Raises:
        ApprovalNotFound: If the approval does not belong to the session
        ApprovalConflict: If the plan was already rejected
    """
    return await _decide(store, session_id, approval_id, ApprovalStatus.APPROVED, reviewer_id, comment)


async def reject_plan(
    store: RecordStore,
    session_id: str,
    approval_id: str,
    reviewer_id: Optional[str] = None,
    comment: Optional[str] = None,
) -> Approval:
    """
    Reject a pending plan and return the session to idle.

    Rejecting an already rejected plan returns it unchanged.

    Raises:
        ApprovalNotFound: If the approval does not belong to the session
        ApprovalConflict: If the plan was already approved
    """
    return await _decide(store, session_id, approval_id, ApprovalStatus.REJECTED, reviewer_id, comment)


async def load_plan(store: RecordStore, approval: Approval) -> Plan:
    """
    Read the plan an approval refers to.

    Raises:
        RecordNotFound: If the plan message is gone
    """
    message = await store.get(Message, approval.message_id)
    if message is None:
        raise RecordNotFound(Message, approval.message_id)
    return Plan.model_validate_json(message.content)
