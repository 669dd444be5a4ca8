"""
Tool-call approval state machine.

PROPOSED -> AUTO_APPROVED                     (policy false: executed in the same turn)
PROPOSED -> AWAITING_APPROVAL                 (policy true: approval-request part appended)
AWAITING_APPROVAL -> APPROVED | DENIED        (resolve_approval appends an approval-response)
APPROVED | DENIED -> RESOLVED                 (tool-result appended; execution-denied when denied)

No state lives in memory: every projection below is recomputed from the persisted thread.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Iterable

from ..common.errors import NotFoundError
from .messages import (
    ExecutionDeniedOutput,
    Message,
    MessageDoc,
    PendingApproval,
    ToolApprovalRequestPart,
    ToolApprovalResponsePart,
    ToolCallPart,
    ToolResultPart,
)
from .tool_registry import ToolContext, ToolOutcome, dispatch

if TYPE_CHECKING:
    from .config import Agent
    from .threads import MessageStore

logger = logging.getLogger(__name__)


class ApprovalState(str, Enum):
    PROPOSED = "proposed"
    AUTO_APPROVED = "auto-approved"
    AWAITING_APPROVAL = "awaiting-approval"
    APPROVED = "approved"
    DENIED = "denied"
    RESOLVED = "resolved"


def find_pending_approval(docs: Iterable[MessageDoc], approval_id: str) -> PendingApproval | None:
    """The unresolved request for approval_id, or None if it is unknown or already answered."""
    found: PendingApproval | None = None
    for doc in docs:
        for part in doc.message.content:
            if isinstance(part, ToolApprovalRequestPart) and part.approval_id == approval_id:
                found = PendingApproval(
                    approval_id=part.approval_id,
                    thread_id=doc.thread_id,
                    tool_call_id=part.tool_call_id,
                    tool_name=part.tool_name,
                    input=part.input,
                    message_id=doc.id,
                )
            elif isinstance(part, ToolApprovalResponsePart) and part.approval_id == approval_id:
                return None
    return found


def pending_approvals(docs: Iterable[MessageDoc]) -> list[PendingApproval]:
    """All unresolved approval requests, oldest first."""
    docs = list(docs)
    answered = {
        p.approval_id
        for d in docs
        for p in d.message.content
        if isinstance(p, ToolApprovalResponsePart)
    }
    pending = []
    for doc in docs:
        for part in doc.message.content:
            if isinstance(part, ToolApprovalRequestPart) and part.approval_id not in answered:
                pending.append(PendingApproval(
                    approval_id=part.approval_id,
                    thread_id=doc.thread_id,
                    tool_call_id=part.tool_call_id,
                    tool_name=part.tool_name,
                    input=part.input,
                    message_id=doc.id,
                ))
    return pending


def approval_states(docs: Iterable[MessageDoc]) -> dict[str, ApprovalState]:
    """Current state of every tool call in the thread, keyed by tool_call_id."""
    states: dict[str, ApprovalState] = {}
    call_for_approval: dict[str, str] = {}
    for doc in docs:
        for part in doc.message.content:
            if isinstance(part, ToolCallPart):
                states[part.tool_call_id] = ApprovalState.PROPOSED
            elif isinstance(part, ToolApprovalRequestPart):
                call_for_approval[part.approval_id] = part.tool_call_id
                states[part.tool_call_id] = ApprovalState.AWAITING_APPROVAL
            elif isinstance(part, ToolApprovalResponsePart):
                tool_call_id = call_for_approval.get(part.approval_id)
                if tool_call_id is not None:
                    states[tool_call_id] = ApprovalState.APPROVED if part.approved else ApprovalState.DENIED
            elif isinstance(part, ToolResultPart):
                current = states.get(part.tool_call_id)
                if current in (ApprovalState.APPROVED, ApprovalState.DENIED):
                    states[part.tool_call_id] = ApprovalState.RESOLVED
                elif current == ApprovalState.PROPOSED:
                    # Executed without ever asking
                    states[part.tool_call_id] = ApprovalState.AUTO_APPROVED
    return states


def open_turn_approvals(docs: Iterable[MessageDoc], turn_message_id: str) -> list[PendingApproval]:
    """
    Approval requests of one assistant turn whose tool call has no tool-result yet.
    A turn is complete when this is empty; answered-but-not-yet-executed calls still count.
    """
    docs = list(docs)
    answered = {
        p.tool_call_id
        for d in docs
        for p in d.message.content
        if isinstance(p, ToolResultPart)
    }
    turn = next((d for d in docs if d.id == turn_message_id), None)
    if turn is None:
        return []
    return [
        PendingApproval(
            approval_id=part.approval_id,
            thread_id=turn.thread_id,
            tool_call_id=part.tool_call_id,
            tool_name=part.tool_name,
            input=part.input,
            message_id=turn.id,
        )
        for part in turn.message.content
        if isinstance(part, ToolApprovalRequestPart) and part.tool_call_id not in answered
    ]


async def list_pending_approvals(store: "MessageStore", thread_id: str) -> list[PendingApproval]:
    from .threads import list_all_messages

    return pending_approvals(await list_all_messages(store, thread_id))


async def list_open_turn_approvals(
    store: "MessageStore",
    thread_id: str,
    turn_message_id: str,
) -> list[PendingApproval]:
    from .threads import list_all_messages

    return open_turn_approvals(await list_all_messages(store, thread_id), turn_message_id)


@dataclass
class ResolvedApproval:
    approval_id: str
    tool_call_id: str
    tool_name: str
    approved: bool
    continuation_message_id: str
    response_message_id: str
    result: ToolResultPart | None = None
    remaining: list[PendingApproval] = field(default_factory=list)
    turn_complete: bool = False

    @property
    def ready_to_continue(self) -> bool:
        """
        True only for the resolution whose tool-result closed the last open approval of its
        turn. Concurrent resolvers of the same turn never both see True. Approvals left open
        by older turns of the thread do not count.
        """
        return self.turn_complete


async def resolve_approval(
    agent: "Agent",
    thread_id: str,
    approval_id: str,
    *,
    approved: bool,
    reason: str | None = None,
    user_id: str | None = None,
) -> ResolvedApproval:
    """
    Answer a pending approval request.

    Appends the approval-response, then (approved) executes the tool exactly once or
    (denied) records an execution-denied result without executing. The tool-result lands
    in a new message whose id is the continuation point for the next generation.
    `remaining` lists the other unanswered approvals of the same turn.

    Raises:
        NotFoundError: approval_id is unknown or was already resolved. Nothing is appended.
    """
    from .threads import list_all_messages

    store = agent.store
    pending = await store.find_unresolved_approval(thread_id, approval_id)
    if pending is None:
        raise NotFoundError(f"Approval {approval_id} not found or already resolved")

    # The store re-checks atomically; a concurrent resolver gets NotFoundError here.
    response_doc = await store.append_message(
        thread_id,
        Message(role="tool", content=[ToolApprovalResponsePart(
            approval_id=approval_id,
            approved=approved,
            reason=reason,
        )]),
        user_id=user_id,
        agent_name=agent.name,
    )
    logger.info(
        f"Approval {approval_id} for tool {pending.tool_name} "
        f"{'approved' if approved else 'denied'} on thread {thread_id}"
    )

    tool_call = ToolCallPart(
        tool_call_id=pending.tool_call_id,
        tool_name=pending.tool_name,
        input=pending.input,
    )
    if approved:
        context = ToolContext(
            thread_id=thread_id,
            user_id=user_id,
            message_id=pending.message_id,
            agent_name=agent.name,
            deps=agent.deps,
        )
        outcome = await dispatch(
            agent.tools,
            context,
            tool_call,
            error_mode=agent.tool_error_mode,
            messages=await list_all_messages(store, thread_id),
        )
    else:
        outcome = ToolOutcome(
            tool_call_id=pending.tool_call_id,
            tool_name=pending.tool_name,
            output=ExecutionDeniedOutput(reason=reason),
        )

    continuation_id = response_doc.id
    result_part = None
    turn_complete = False
    if outcome is not None:
        result_part = outcome.to_part()
        result_doc, turn_complete = await store.append_tool_result(
            thread_id,
            Message(role="tool", content=[result_part]),
            turn_message_id=pending.message_id,
            user_id=user_id,
            agent_name=agent.name,
        )
        continuation_id = result_doc.id

    remaining = [
        p for p in await list_pending_approvals(store, thread_id)
        if p.message_id == pending.message_id
    ]
    return ResolvedApproval(
        approval_id=approval_id,
        tool_call_id=pending.tool_call_id,
        tool_name=pending.tool_name,
        approved=approved,
        continuation_message_id=continuation_id,
        response_message_id=response_doc.id,
        result=result_part,
        remaining=remaining,
        turn_complete=turn_complete,
    )


async def approve_tool_call(
    agent: "Agent",
    thread_id: str,
    approval_id: str,
    *,
    reason: str | None = None,
    user_id: str | None = None,
) -> ResolvedApproval:
    return await resolve_approval(agent, thread_id, approval_id, approved=True, reason=reason, user_id=user_id)


async def deny_tool_call(
    agent: "Agent",
    thread_id: str,
    approval_id: str,
    *,
    reason: str | None = None,
    user_id: str | None = None,
) -> ResolvedApproval:
    return await resolve_approval(agent, thread_id, approval_id, approved=False, reason=reason, user_id=user_id)
