"""
Context selection for a model turn: thread messages up to the prompt message, trimmed to the
most recent N, with tool parts that lost their counterpart removed.
"""
from __future__ import annotations

from .messages import (
    MessageDoc,
    ToolApprovalRequestPart,
    ToolApprovalResponsePart,
    ToolCallPart,
    ToolResultPart,
)
from .threads import MessageStore, list_all_messages
from ..common.errors import NotFoundError


def filter_out_orphaned_tool_messages(docs: list[MessageDoc]) -> list[MessageDoc]:
    """
    Drop tool-call parts that have neither a tool-result nor an approval-response, tool-result
    parts with no tool-call, and approval-requests whose call was dropped.
    Messages left without content are dropped entirely.
    """
    call_ids: set[str] = set()
    result_ids: set[str] = set()
    approval_calls: dict[str, str] = {}
    responded: set[str] = set()
    for doc in docs:
        for part in doc.message.content:
            if isinstance(part, ToolCallPart):
                call_ids.add(part.tool_call_id)
            elif isinstance(part, ToolResultPart):
                result_ids.add(part.tool_call_id)
            elif isinstance(part, ToolApprovalRequestPart):
                approval_calls[part.approval_id] = part.tool_call_id
            elif isinstance(part, ToolApprovalResponsePart):
                responded.add(part.approval_id)

    answered_calls = result_ids | {approval_calls[a] for a in responded if a in approval_calls}

    out: list[MessageDoc] = []
    for doc in docs:
        kept = []
        for part in doc.message.content:
            if isinstance(part, ToolCallPart) and part.tool_call_id not in answered_calls:
                continue
            if isinstance(part, ToolResultPart) and part.tool_call_id not in call_ids:
                continue
            if isinstance(part, ToolApprovalRequestPart) and part.tool_call_id not in answered_calls:
                continue
            kept.append(part)
        if not kept:
            continue
        if len(kept) == len(doc.message.content):
            out.append(doc)
        else:
            filtered = doc.model_copy(deep=True)
            filtered.message.content = kept
            out.append(filtered)
    return out


async def fetch_context_messages(
    store: MessageStore,
    thread_id: str,
    *,
    up_to_message_id: str | None = None,
    recent_messages: int = 100,
) -> list[MessageDoc]:
    docs = await list_all_messages(store, thread_id)
    if up_to_message_id is not None:
        bound = next((d for d in docs if d.id == up_to_message_id), None)
        if bound is None:
            raise NotFoundError(f"Message {up_to_message_id} not found in thread {thread_id}")
        docs = [d for d in docs if d.key <= bound.key]
    if recent_messages and len(docs) > recent_messages:
        docs = docs[-recent_messages:]
    return filter_out_orphaned_tool_messages(docs)
