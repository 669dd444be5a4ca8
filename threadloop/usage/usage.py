import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable

from pydantic import BaseModel

from ..agent.messages import Usage

logger = logging.getLogger(__name__)


class UsageRecord(BaseModel):
    """Token usage of one completed model turn."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    reasoning_tokens: int | None = None
    cached_input_tokens: int | None = None
    total_tokens: int = 0
    model_id: str | None = None
    thread_id: str
    user_id: str | None = None
    agent_name: str | None = None


UsageHandler = Callable[[UsageRecord], Awaitable[None] | None]

record_usage_hook: UsageHandler | None = None  # Process-wide fallback, set by the app


def set_record_usage_hook(fn: UsageHandler | None) -> None:
    """Set the handler used for agents that do not carry their own usage_handler."""
    global record_usage_hook
    record_usage_hook = fn


def usage_record_from(
    usage: Usage | None,
    *,
    thread_id: str,
    model_id: str | None = None,
    user_id: str | None = None,
    agent_name: str | None = None,
) -> UsageRecord:
    usage = usage or Usage()
    return UsageRecord(
        prompt_tokens=usage.prompt_tokens,
        completion_tokens=usage.completion_tokens,
        reasoning_tokens=usage.reasoning_tokens,
        cached_input_tokens=usage.cached_input_tokens,
        total_tokens=usage.total_tokens or (usage.prompt_tokens + usage.completion_tokens),
        model_id=model_id,
        thread_id=thread_id,
        user_id=user_id,
        agent_name=agent_name,
    )


async def record_usage(handler: UsageHandler | None, record: UsageRecord) -> None:
    """
    Hand a usage record to the handler (or the process-wide hook).
    Failures are logged and never fail the agent turn.
    """
    handler = handler or record_usage_hook
    if handler is None:
        return
    try:
        result: Any = handler(record)
        if inspect.isawaitable(result):
            await result
    except Exception as e:
        logger.warning(f"Error recording usage for thread {record.thread_id} (model={record.model_id}): {e}")


def add_usage(a: Usage | None, b: Usage | None) -> Usage | None:
    """Sum two usages; None fields stay None only when both sides are None."""
    if a is None:
        return b
    if b is None:
        return a

    def _opt(x, y):
        if x is None and y is None:
            return None
        return (x or 0) + (y or 0)

    return Usage(
        prompt_tokens=a.prompt_tokens + b.prompt_tokens,
        completion_tokens=a.completion_tokens + b.completion_tokens,
        reasoning_tokens=_opt(a.reasoning_tokens, b.reasoning_tokens),
        cached_input_tokens=_opt(a.cached_input_tokens, b.cached_input_tokens),
        total_tokens=a.total_tokens + b.total_tokens,
    )


_pending_records: set[asyncio.Task] = set()


def schedule_usage(handler: UsageHandler | None, record: UsageRecord) -> asyncio.Task | None:
    """Hand the record over in a background task; the agent turn does not wait for the handler."""
    if (handler or record_usage_hook) is None:
        return None
    task = asyncio.create_task(record_usage(handler, record))
    _pending_records.add(task)
    task.add_done_callback(_pending_records.discard)
    return task


async def flush_usage() -> None:
    """Wait for scheduled usage records that are still being handled."""
    while _pending_records:
        await asyncio.gather(*list(_pending_records), return_exceptions=True)
