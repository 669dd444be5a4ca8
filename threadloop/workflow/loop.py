"""
Workflow loop: drives an agent one step per iteration toward a terminal state.

Each iteration runs exactly one model turn. Delegate calls are fanned out and their results
injected; a turn with no tool calls that stops normally completes the run; a turn waiting on
approval suspends the run until resume_workflow(); anything else gets a continuation prompt.
The run holds no lock or open call while suspended: the thread carries all resume state.
"""
from __future__ import annotations

import inspect
import logging
from datetime import datetime, UTC
from typing import Any, Awaitable, Callable, Literal

from pydantic import BaseModel, Field

from ..agent.agent_loop import run_step, send_message
from ..agent.approvals import list_open_turn_approvals
from ..agent.config import Agent
from ..agent.messages import PendingApproval, ToolCallPart
from ..agent.tools.research_tools import DELEGATE_TOOL_NAME, scratchpad_for
from ..agent.tool_registry import ToolContext
from ..common.errors import NotFoundError, ThreadloopError
from ..common.id import create_prefixed_id
from ..common.settings import get_settings
from .delegation import SubtaskRunner, echo_subtask_runner, fan_out_delegates, inject_subtask_results

logger = logging.getLogger(__name__)

INITIAL_PROMPT = "Task: {task}\n\nPlan your research in the scratchpad."
CONTINUATION_PROMPT = "Continue with your research until the report in the scratchpad is finished."
NO_RESULT = "No report generated."

WorkflowStatus = Literal["running", "completed", "exhausted", "awaiting-approval", "cancelled", "failed"]


class WorkflowRun(BaseModel):
    run_id: str = Field(default_factory=lambda: create_prefixed_id("run"))
    task: str
    thread_id: str
    user_id: str | None = None
    iteration: int = 0
    max_iterations: int
    is_complete: bool = False
    status: WorkflowStatus = "running"
    prompt_message_id: str | None = None
    scratch: Any = None
    last_text: str = ""
    pending_delegates: list[ToolCallPart] = Field(default_factory=list)
    pending_approvals: list[PendingApproval] = Field(default_factory=list)
    error: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def final_result(self) -> Any:
        if self.scratch is not None:
            return self.scratch
        return self.last_text or NO_RESULT


class WorkflowResult(BaseModel):
    iterations: int
    final_result: Any
    run: WorkflowRun


ScratchReader = Callable[[WorkflowRun], Awaitable[Any]]
CancelCheck = Callable[[], bool | Awaitable[bool]]


def scratchpad_reader(agent: Agent) -> ScratchReader:
    """Reads the run thread's scratchpad, using the agent's deps the way its tools do."""

    async def _read(run: WorkflowRun) -> Any:
        ctx = ToolContext(thread_id=run.thread_id, user_id=run.user_id, agent_name=agent.name, deps=agent.deps)
        return await scratchpad_for(ctx).get(run.thread_id)

    return _read


def _result(run: WorkflowRun) -> WorkflowResult:
    run.updated_at = datetime.now(UTC)
    return WorkflowResult(iterations=run.iteration, final_result=run.final_result, run=run)


async def _cancelled(should_cancel: CancelCheck | None) -> bool:
    if should_cancel is None:
        return False
    result = should_cancel()
    if inspect.isawaitable(result):
        result = await result
    return bool(result)


async def _delegate(agent: Agent, run: WorkflowRun, delegate_calls: list[ToolCallPart], run_subtask: SubtaskRunner) -> None:
    results = await fan_out_delegates(
        delegate_calls,
        run_subtask,
        parent_thread_id=run.thread_id,
        user_id=run.user_id,
    )
    run.prompt_message_id = await inject_subtask_results(
        agent.store,
        run.thread_id,
        results,
        agent_name=agent.name,
        user_id=run.user_id,
    )
    run.pending_delegates = []


async def create_workflow_run(
    agent: Agent,
    task: str,
    *,
    thread_id: str | None = None,
    user_id: str | None = None,
    max_iterations: int | None = None,
) -> WorkflowRun:
    """Create the thread (unless given) and post the task prompt; nothing runs yet."""
    if thread_id is None:
        thread_id = await agent.store.create_thread(user_id=user_id, title=f"Deep Research: {task[:50]}")
    elif await agent.store.get_thread(thread_id) is None:
        raise NotFoundError(f"Thread {thread_id} not found")
    prompt_message_id = await send_message(agent, thread_id, INITIAL_PROMPT.format(task=task), user_id=user_id)
    return WorkflowRun(
        task=task,
        thread_id=thread_id,
        user_id=user_id,
        max_iterations=max_iterations if max_iterations is not None else get_settings().max_iterations,
        prompt_message_id=prompt_message_id,
    )


async def drive_workflow(
    agent: Agent,
    run: WorkflowRun,
    *,
    run_subtask: SubtaskRunner | None = None,
    read_scratch: ScratchReader | None = None,
    should_cancel: CancelCheck | None = None,
) -> WorkflowResult:
    """
    Iterate until the run completes, suspends, is cancelled or exhausts max_iterations.
    ModelProviderError and other unexpected errors mark the run failed and propagate.
    """
    run_subtask = run_subtask or echo_subtask_runner
    read_scratch = read_scratch or scratchpad_reader(agent)
    run.status = "running"
    try:
        while not run.is_complete and run.iteration < run.max_iterations:
            if await _cancelled(should_cancel):
                run.status = "cancelled"
                logger.info(f"Workflow {run.run_id} cancelled after {run.iteration} iteration(s)")
                return _result(run)

            run.iteration += 1
            logger.info(f"Workflow {run.run_id} turn {run.iteration}/{run.max_iterations}")
            step = await run_step(agent, run.thread_id, prompt_message_id=run.prompt_message_id, user_id=run.user_id)
            if step.text:
                run.last_text = step.text
            scratch = await read_scratch(run)
            if scratch is not None:
                run.scratch = scratch

            delegate_calls = [tc for tc in step.tool_calls if tc.tool_name == DELEGATE_TOOL_NAME]
            if step.awaiting_approval:
                run.pending_delegates = delegate_calls
                run.pending_approvals = step.pending_approvals
                run.status = "awaiting-approval"
                logger.info(f"Workflow {run.run_id} waiting on {len(step.pending_approvals)} approval(s)")
                return _result(run)

            if delegate_calls:
                await _delegate(agent, run, delegate_calls, run_subtask)
                continue

            if not step.tool_calls and step.finish_reason == "stop":
                run.is_complete = True
                break

            run.prompt_message_id = await send_message(agent, run.thread_id, CONTINUATION_PROMPT, user_id=run.user_id)
    except Exception as e:
        run.status = "failed"
        run.error = str(e)
        run.updated_at = datetime.now(UTC)
        logger.error(f"Workflow {run.run_id} failed at iteration {run.iteration}: {e}")
        raise

    run.status = "completed" if run.is_complete else "exhausted"
    logger.info(f"Workflow {run.run_id} {run.status} after {run.iteration} iteration(s)")
    return _result(run)


async def run_workflow(
    agent: Agent,
    task: str,
    *,
    thread_id: str | None = None,
    user_id: str | None = None,
    max_iterations: int | None = None,
    run_subtask: SubtaskRunner | None = None,
    read_scratch: ScratchReader | None = None,
    should_cancel: CancelCheck | None = None,
) -> WorkflowResult:
    run = await create_workflow_run(
        agent,
        task,
        thread_id=thread_id,
        user_id=user_id,
        max_iterations=max_iterations,
    )
    return await drive_workflow(
        agent,
        run,
        run_subtask=run_subtask,
        read_scratch=read_scratch,
        should_cancel=should_cancel,
    )


async def resume_workflow(
    agent: Agent,
    run: WorkflowRun,
    continuation_message_id: str,
    *,
    run_subtask: SubtaskRunner | None = None,
    read_scratch: ScratchReader | None = None,
    should_cancel: CancelCheck | None = None,
) -> WorkflowResult:
    """
    Continue a run suspended on approval from the message returned by resolve_approval.
    Stays suspended while other approvals from the same turn are still open.
    """
    if run.status != "awaiting-approval":
        raise ThreadloopError(f"Workflow {run.run_id} is {run.status}, not awaiting approval")
    # Claimed before the first await so a second resume of the same run is rejected
    run.status = "running"
    run.prompt_message_id = continuation_message_id
    remaining: list[PendingApproval] = []
    for turn_message_id in dict.fromkeys(a.message_id for a in run.pending_approvals):
        remaining.extend(await list_open_turn_approvals(agent.store, run.thread_id, turn_message_id))
    if remaining:
        run.pending_approvals = remaining
        run.status = "awaiting-approval"
        return _result(run)
    run.pending_approvals = []
    if run.pending_delegates:
        await _delegate(agent, run, run.pending_delegates, run_subtask or echo_subtask_runner)
    return await drive_workflow(
        agent,
        run,
        run_subtask=run_subtask,
        read_scratch=read_scratch,
        should_cancel=should_cancel,
    )


class RunRegistry:
    """Process-local index of workflow runs, for the HTTP layer."""

    def __init__(self) -> None:
        self._runs: dict[str, WorkflowRun] = {}

    def add(self, run: WorkflowRun) -> WorkflowRun:
        self._runs[run.run_id] = run
        return run

    def get(self, run_id: str) -> WorkflowRun:
        run = self._runs.get(run_id)
        if run is None:
            raise NotFoundError(f"Workflow run {run_id} not found")
        return run

    def find_by_thread(self, thread_id: str) -> WorkflowRun | None:
        return next((r for r in self._runs.values() if r.thread_id == thread_id), None)

    def list(self) -> list[WorkflowRun]:
        return list(self._runs.values())


_run_registry: RunRegistry | None = None


def get_run_registry() -> RunRegistry:
    global _run_registry
    if _run_registry is None:
        _run_registry = RunRegistry()
    return _run_registry
