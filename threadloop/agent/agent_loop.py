"""
Step engine: model turn -> tool calls -> approval check -> execute auto-approved calls -> loop.

Every turn is persisted as it happens: the assistant message (text, tool calls and any
approval requests), then one tool message with the results of the calls that ran. A turn
that leaves a call awaiting approval ends the run with finish_reason "awaiting-approval";
resolve_approval() answers it and generation resumes from the returned continuation message.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, AsyncIterator, Callable

from pydantic import BaseModel, Field

from ..common.errors import NotFoundError, ThreadloopError
from ..common.id import create_prefixed_id
from ..llm.model import ResponseBuilder
from ..usage import add_usage, schedule_usage, usage_record_from
from .context import fetch_context_messages
from .messages import (
    Message,
    PendingApproval,
    ReasoningPart,
    TextPart,
    ToolApprovalRequestPart,
    ToolCallPart,
    ToolResultPart,
    Usage,
)
from .streaming import StreamChunk, StreamingOptions
from .system_prompt import build_system_message
from .tool_registry import ToolContext, dispatch_all, needs_approval, tool_definitions

if TYPE_CHECKING:
    from .config import Agent

logger = logging.getLogger(__name__)

AWAITING_APPROVAL = "awaiting-approval"


class StepRecord(BaseModel):
    step_number: int
    text: str = ""
    reasoning: str | None = None
    tool_calls: list[ToolCallPart] = Field(default_factory=list)
    tool_results: list[ToolResultPart] = Field(default_factory=list)
    approval_requests: list[ToolApprovalRequestPart] = Field(default_factory=list)
    finish_reason: str = "stop"
    usage: Usage | None = None
    model_id: str | None = None
    message_ids: list[str] = Field(default_factory=list)


class StepResult(BaseModel):
    """Outcome of generate_text. text, tool_calls and tool_results describe the last step."""

    thread_id: str
    text: str = ""
    reasoning: str | None = None
    tool_calls: list[ToolCallPart] = Field(default_factory=list)
    tool_results: list[ToolResultPart] = Field(default_factory=list)
    finish_reason: str = "stop"
    steps: list[StepRecord] = Field(default_factory=list)
    prompt_message_id: str
    saved_message_ids: list[str] = Field(default_factory=list)
    pending_approvals: list[PendingApproval] = Field(default_factory=list)
    usage: Usage | None = None

    @property
    def awaiting_approval(self) -> bool:
        return self.finish_reason == AWAITING_APPROVAL


StopCondition = Callable[[list[StepRecord]], bool]


def step_count_is(n: int) -> StopCondition:
    def _stop(steps: list[StepRecord]) -> bool:
        return len(steps) >= n
    return _stop


def has_tool_call(tool_name: str) -> StopCondition:
    """Stop after a step in which the model called tool_name."""
    def _stop(steps: list[StepRecord]) -> bool:
        return bool(steps) and any(tc.tool_name == tool_name for tc in steps[-1].tool_calls)
    return _stop


async def send_message(
    agent: "Agent",
    thread_id: str,
    prompt: str,
    *,
    user_id: str | None = None,
) -> str:
    """Append a user message that starts a new order; returns its id."""
    doc = await agent.store.append_message(
        thread_id,
        Message.user(prompt),
        new_order=True,
        user_id=user_id,
        agent_name=agent.name,
    )
    return doc.id


async def _resolve_prompt(
    agent: "Agent",
    thread_id: str,
    prompt: str | None,
    prompt_message_id: str | None,
    user_id: str | None,
) -> tuple[str, list[str]]:
    if prompt is not None and prompt_message_id is not None:
        raise ThreadloopError("Pass either prompt or prompt_message_id, not both")
    if prompt is not None:
        message_id = await send_message(agent, thread_id, prompt, user_id=user_id)
        return message_id, [message_id]
    if prompt_message_id is not None:
        return prompt_message_id, []
    latest = await agent.store.list_messages(thread_id, num_items=1, order="desc")
    if not latest.page:
        raise NotFoundError(f"Thread {thread_id} has no message to respond to")
    return latest.page[0].id, []


async def _run_steps(
    agent: "Agent",
    thread_id: str,
    *,
    prompt: str | None = None,
    prompt_message_id: str | None = None,
    user_id: str | None = None,
    stop_when: list[StopCondition] | None = None,
    streaming: StreamingOptions | None = None,
) -> AsyncIterator[StreamChunk]:
    """
    The step loop behind generate_text and stream_text. Yields stream chunks and ends with a
    "finish" chunk whose result is the StepResult. Without streaming options the model is
    called with generate() and only tool/approval/finish chunks are produced.
    """
    store = agent.store
    prompt_message_id, saved_ids = await _resolve_prompt(agent, thread_id, prompt, prompt_message_id, user_id)
    conditions = [step_count_is(agent.max_steps), *agent.stop_when, *(stop_when or [])]
    system = build_system_message(agent)
    tools = tool_definitions(agent.tools)
    context = ToolContext(
        thread_id=thread_id,
        user_id=user_id,
        message_id=prompt_message_id,
        agent_name=agent.name,
        deps=agent.deps,
    )

    steps: list[StepRecord] = []
    total_usage: Usage | None = None
    pending: list[PendingApproval] = []
    context_bound = prompt_message_id
    while True:
        step_number = len(steps) + 1
        history = await fetch_context_messages(
            store,
            thread_id,
            up_to_message_id=context_bound,
            recent_messages=agent.recent_messages,
        )
        messages = ([system] if system else []) + [d.message for d in history]
        logger.info(f"Agent {agent.name} step {step_number} on thread {thread_id} ({len(history)} context messages)")

        if streaming is None:
            response = await agent.model.generate(messages, tools)
        else:
            builder = ResponseBuilder(agent.model.model_id)
            chunker = streaming.chunker()
            async for delta in agent.model.stream(messages, tools):
                builder.add(delta)
                if delta.type == "text-delta":
                    for piece in chunker.push(delta.text):
                        yield StreamChunk(type="text-delta", text=piece, step_number=step_number)
                elif delta.type == "reasoning-delta":
                    yield StreamChunk(type="reasoning-delta", text=delta.text, step_number=step_number)
                elif delta.type == "tool-input-delta":
                    yield StreamChunk(
                        type="tool-input-delta",
                        text=delta.text,
                        tool_call_id=delta.tool_call_id,
                        tool_name=delta.tool_name,
                        step_number=step_number,
                    )
            for piece in chunker.flush():
                yield StreamChunk(type="text-delta", text=piece, step_number=step_number)
            response = builder.build()

        model_id = response.model_id or agent.model.model_id
        schedule_usage(agent.usage_handler, usage_record_from(
            response.usage,
            thread_id=thread_id,
            model_id=model_id,
            user_id=user_id,
            agent_name=agent.name,
        ))

        approval_requests: list[ToolApprovalRequestPart] = []
        auto_calls: list[ToolCallPart] = []
        for tc in response.tool_calls:
            if await needs_approval(agent.tools, context, tc, history):
                approval_requests.append(ToolApprovalRequestPart(
                    approval_id=create_prefixed_id("approval"),
                    tool_call_id=tc.tool_call_id,
                    tool_name=tc.tool_name,
                    input=tc.input,
                ))
            else:
                auto_calls.append(tc)

        content = []
        if response.reasoning:
            content.append(ReasoningPart(text=response.reasoning))
        if response.text:
            content.append(TextPart(text=response.text))
        content.extend(response.tool_calls)
        content.extend(approval_requests)
        finish_reason = AWAITING_APPROVAL if approval_requests else response.finish_reason

        assistant_doc = await store.append_message(
            thread_id,
            Message(role="assistant", content=content),
            user_id=user_id,
            agent_name=agent.name,
            model=model_id,
            finish_reason=finish_reason,
            usage=response.usage,
        )
        message_ids = [assistant_doc.id]
        for tc in response.tool_calls:
            yield StreamChunk(type="tool-call", tool_call=tc, step_number=step_number)
        pending = [
            PendingApproval(
                approval_id=req.approval_id,
                thread_id=thread_id,
                tool_call_id=req.tool_call_id,
                tool_name=req.tool_name,
                input=req.input,
                message_id=assistant_doc.id,
            )
            for req in approval_requests
        ]
        for approval in pending:
            yield StreamChunk(type="approval-request", approval=approval, step_number=step_number)

        outcomes = await dispatch_all(
            agent.tools,
            context,
            auto_calls,
            error_mode=agent.tool_error_mode,
            messages=history,
        )
        results = [o.to_part() for o in outcomes if o is not None]
        unanswered = len(results) < len(outcomes)
        if results:
            tool_doc = await store.append_message(
                thread_id,
                Message(role="tool", content=results),
                user_id=user_id,
                agent_name=agent.name,
            )
            message_ids.append(tool_doc.id)
            for result in results:
                yield StreamChunk(type="tool-result", tool_result=result, step_number=step_number)

        steps.append(StepRecord(
            step_number=step_number,
            text=response.text,
            reasoning=response.reasoning,
            tool_calls=response.tool_calls,
            tool_results=results,
            approval_requests=approval_requests,
            finish_reason=finish_reason,
            usage=response.usage,
            model_id=model_id,
            message_ids=message_ids,
        ))
        saved_ids.extend(message_ids)
        total_usage = add_usage(total_usage, response.usage)
        context_bound = message_ids[-1]
        logger.info(
            f"Agent {agent.name} step {step_number} finished: {finish_reason}, "
            f"{len(response.tool_calls)} tool call(s), {len(approval_requests)} awaiting approval"
        )

        if not response.tool_calls or approval_requests or unanswered:
            break
        if any(cond(steps) for cond in conditions):
            break

    last = steps[-1]
    result = StepResult(
        thread_id=thread_id,
        text=last.text,
        reasoning=last.reasoning,
        tool_calls=last.tool_calls,
        tool_results=last.tool_results,
        finish_reason=last.finish_reason,
        steps=steps,
        prompt_message_id=prompt_message_id,
        saved_message_ids=saved_ids,
        pending_approvals=pending,
        usage=total_usage,
    )
    yield StreamChunk(type="finish", finish_reason=result.finish_reason, result=result)


async def consume_stream(stream: AsyncIterator[StreamChunk]) -> StepResult:
    """Drain a chunk stream and return the StepResult carried by its finish chunk."""
    result = None
    async for chunk in stream:
        if chunk.type == "finish":
            result = chunk.result
    if result is None:
        raise ThreadloopError("Stream ended without a finish chunk")
    return result


async def generate_text(
    agent: "Agent",
    thread_id: str,
    *,
    prompt: str | None = None,
    prompt_message_id: str | None = None,
    user_id: str | None = None,
    stop_when: list[StopCondition] | None = None,
) -> StepResult:
    """
    Run model turns on a thread until the model stops calling tools, a call awaits approval,
    a call is left for the client to answer, or a stop condition (including max_steps) matches.
    With neither prompt nor prompt_message_id, responds to the latest message.
    """
    return await consume_stream(_run_steps(
        agent,
        thread_id,
        prompt=prompt,
        prompt_message_id=prompt_message_id,
        user_id=user_id,
        stop_when=stop_when,
    ))


async def run_step(
    agent: "Agent",
    thread_id: str,
    *,
    prompt: str | None = None,
    prompt_message_id: str | None = None,
    user_id: str | None = None,
) -> StepResult:
    """Exactly one model turn (plus execution of its auto-approved calls)."""
    return await generate_text(
        agent,
        thread_id,
        prompt=prompt,
        prompt_message_id=prompt_message_id,
        user_id=user_id,
        stop_when=[step_count_is(1)],
    )


def stream_text(
    agent: "Agent",
    thread_id: str,
    *,
    prompt: str | None = None,
    prompt_message_id: str | None = None,
    user_id: str | None = None,
    stop_when: list[StopCondition] | None = None,
    options: StreamingOptions | None = None,
) -> AsyncIterator[StreamChunk]:
    """generate_text as a chunk stream; pass the stream to consume_stream for the result."""
    return _run_steps(
        agent,
        thread_id,
        prompt=prompt,
        prompt_message_id=prompt_message_id,
        user_id=user_id,
        stop_when=stop_when,
        streaming=options or StreamingOptions.from_settings(),
    )
