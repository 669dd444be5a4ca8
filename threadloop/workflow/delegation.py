"""
Parallel sub-task delegation and result re-injection.

Delegate calls from one step are fanned out concurrently; each failure is captured in its own
DelegateResult so one bad sub-task never sinks the batch. The results are then written back
to the parent thread as a single subagent_completion tool call and its tool result.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from pydantic import BaseModel

from ..agent.agent_loop import generate_text
from ..agent.config import Agent
from ..agent.messages import JsonOutput, Message, ToolCallPart, ToolResultPart
from ..agent.threads import MessageStore
from ..agent.tools.research_tools import SUBAGENT_COMPLETION_TOOL_NAME
from ..common.id import create_prefixed_id

logger = logging.getLogger(__name__)

INJECTION_MESSAGE = "Here are the results from your delegated tasks."


class DelegateResult(BaseModel):
    title: str
    output: str
    error: bool = False


# (title, prompt, parent_thread_id, user_id) -> sub-task output
SubtaskRunner = Callable[[str, str, str, str | None], Awaitable[str]]


async def echo_subtask_runner(title: str, prompt: str, parent_thread_id: str, user_id: str | None = None) -> str:
    """Stand-in runner used when no sub-agent is configured."""
    return f"Detailed research results for: {title}"


def make_subagent_runner(subagent: Agent) -> SubtaskRunner:
    """Runner that gives each sub-task its own thread and runs the sub-agent on it to completion."""

    async def _run(title: str, prompt: str, parent_thread_id: str, user_id: str | None = None) -> str:
        thread_id = await subagent.store.create_thread(user_id=user_id, title=f"Sub-task: {title}"[:80])
        logger.info(f"Sub-agent {subagent.name} working on '{title}' in thread {thread_id} (parent {parent_thread_id})")
        result = await generate_text(subagent, thread_id, prompt=prompt, user_id=user_id)
        return result.text

    return _run


async def _run_delegate(
    tool_call: ToolCallPart,
    run_subtask: SubtaskRunner,
    parent_thread_id: str,
    user_id: str | None,
) -> DelegateResult:
    params = tool_call.input if isinstance(tool_call.input, dict) else {}
    title = params.get("task_title") or tool_call.tool_call_id
    prompt = params.get("task_prompt")
    if not prompt:
        return DelegateResult(title=title, output="Invalid delegation request: task_prompt is required", error=True)
    try:
        output = await run_subtask(title, prompt, parent_thread_id, user_id)
        return DelegateResult(title=title, output=output)
    except Exception as e:
        logger.exception(f"Delegated task '{title}' failed")
        return DelegateResult(title=title, output=f"Sub-task failed: {e}", error=True)


async def fan_out_delegates(
    delegate_calls: list[ToolCallPart],
    run_subtask: SubtaskRunner,
    *,
    parent_thread_id: str,
    user_id: str | None = None,
) -> list[DelegateResult]:
    """Run every delegate call concurrently; results line up with delegate_calls."""
    logger.info(f"Orchestrating {len(delegate_calls)} parallel delegation(s) for thread {parent_thread_id}")
    return list(await asyncio.gather(*(
        _run_delegate(tc, run_subtask, parent_thread_id, user_id) for tc in delegate_calls
    )))


async def inject_subtask_results(
    store: MessageStore,
    thread_id: str,
    results: list[DelegateResult],
    *,
    agent_name: str | None = None,
    user_id: str | None = None,
) -> str:
    """
    Append an assistant subagent_completion call carrying all results, then its tool result.
    Returns the id of the tool message, which is where the next step continues from.
    """
    tool_call_id = create_prefixed_id("subagent-results")
    payload = [r.model_dump() for r in results]
    await store.append_message(
        thread_id,
        Message(role="assistant", content=[ToolCallPart(
            tool_call_id=tool_call_id,
            tool_name=SUBAGENT_COMPLETION_TOOL_NAME,
            input={"results": payload},
        )]),
        agent_name=agent_name,
        user_id=user_id,
    )
    doc = await store.append_message(
        thread_id,
        Message(role="tool", content=[ToolResultPart(
            tool_call_id=tool_call_id,
            tool_name=SUBAGENT_COMPLETION_TOOL_NAME,
            output=JsonOutput(value={
                "success": True,
                "message": INJECTION_MESSAGE,
                "results": payload,
            }),
        )]),
        agent_name=agent_name,
        user_id=user_id,
    )
    return doc.id
