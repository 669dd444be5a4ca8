# agent.py: Agent thread endpoints (messages, approvals) and workflow runs.

import json
import logging
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Body, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

import threadloop as tl
from app.dependencies import (
    get_agent,
    get_run_registry,
    get_store,
    get_subtask_runner,
    get_workflow_agent,
)

logger = logging.getLogger(__name__)

agent_router = APIRouter(tags=["agent"])


class CreateThreadBody(BaseModel):
    title: str | None = None
    user_id: str | None = None


class CreateThreadResponse(BaseModel):
    thread_id: str


class SendMessageRequest(BaseModel):
    prompt: str = Field(..., min_length=1, description="User message")
    user_id: str | None = None
    stream: bool = Field(default=False, description="Stream the generation (SSE) instead of running it in the background")


class SendMessageResponse(BaseModel):
    message_id: str


class ApprovalRequest(BaseModel):
    approved: bool
    reason: str | None = Field(default=None, description="Shown to the model when the call is denied")
    user_id: str | None = None


class ApprovalResponse(BaseModel):
    continuation_message_id: str
    approved: bool
    result: tl.agent.ToolResultPart | None = None
    remaining_approvals: int = 0


class StartWorkflowRequest(BaseModel):
    task: str = Field(..., min_length=1)
    max_iterations: int | None = Field(default=None, ge=1)
    user_id: str | None = None


class StartWorkflowResponse(BaseModel):
    run_id: str
    thread_id: str


class ToolInfo(BaseModel):
    name: str
    description: str
    needs_approval: str = Field(..., description="always, never or conditional")


async def _require_thread(store: tl.agent.MessageStore, thread_id: str) -> tl.agent.Thread:
    thread = await store.get_thread(thread_id)
    if thread is None:
        raise HTTPException(status_code=404, detail="Thread not found")
    return thread


async def _generate_in_background(
    agent: tl.agent.Agent,
    thread_id: str,
    prompt_message_id: str,
    user_id: str | None,
) -> None:
    try:
        result = await tl.agent.generate_text(agent, thread_id, prompt_message_id=prompt_message_id, user_id=user_id)
        logger.info(f"Generation on thread {thread_id} finished: {result.finish_reason}")
    except Exception:
        logger.exception(f"Generation failed on thread {thread_id}")


async def _drive_in_background(
    agent: tl.agent.Agent,
    run: tl.workflow.WorkflowRun,
    run_subtask: tl.workflow.SubtaskRunner,
    continuation_message_id: str | None = None,
) -> None:
    try:
        if continuation_message_id is None:
            await tl.workflow.drive_workflow(agent, run, run_subtask=run_subtask)
        else:
            await tl.workflow.resume_workflow(agent, run, continuation_message_id, run_subtask=run_subtask)
    except Exception:
        # drive_workflow already marked the run failed
        logger.exception(f"Workflow {run.run_id} failed")


@agent_router.post("/v0/threads", response_model=CreateThreadResponse)
async def create_thread(
    body: CreateThreadBody | None = Body(None),
    store: tl.agent.MessageStore = Depends(get_store),
):
    """Create an empty thread."""
    body = body or CreateThreadBody()
    thread_id = await store.create_thread(user_id=body.user_id, title=body.title)
    return CreateThreadResponse(thread_id=thread_id)


@agent_router.get("/v0/threads/{thread_id}", response_model=tl.agent.Thread)
async def get_thread(thread_id: str, store: tl.agent.MessageStore = Depends(get_store)):
    return await _require_thread(store, thread_id)


@agent_router.get("/v0/threads/{thread_id}/messages", response_model=tl.agent.MessagePage)
async def list_messages(
    thread_id: str,
    cursor: str | None = Query(None),
    limit: int = Query(100, ge=1, le=500),
    store: tl.agent.MessageStore = Depends(get_store),
):
    """Messages oldest first; follow continue_cursor until is_done."""
    await _require_thread(store, thread_id)
    return await store.list_messages(thread_id, cursor=cursor, num_items=limit)


@agent_router.post("/v0/threads/{thread_id}/messages")
async def post_message(
    thread_id: str,
    background_tasks: BackgroundTasks,
    request: SendMessageRequest = Body(...),
    agent: tl.agent.Agent = Depends(get_agent),
):
    """
    Append a user message and generate a response. The response text, tool calls and any
    approval requests land on the thread; poll the messages and approvals endpoints.
    When stream=True, returns SSE stream chunks (text-delta, tool-call, approval-request, finish, ...).
    """
    await _require_thread(agent.store, thread_id)
    message_id = await tl.agent.send_message(agent, thread_id, request.prompt, user_id=request.user_id)

    if request.stream:
        async def generate_sse():
            try:
                async for chunk in tl.agent.stream_text(
                    agent, thread_id, prompt_message_id=message_id, user_id=request.user_id
                ):
                    payload: dict[str, Any] = chunk.model_dump(mode="json", exclude_none=True)
                    if chunk.type == "finish":
                        payload["result"] = chunk.result.model_dump(mode="json")
                    yield f"data: {json.dumps(payload)}\n\n"
            except Exception as e:
                logger.exception(f"Streaming generation failed on thread {thread_id}")
                yield f"data: {json.dumps({'type': 'error', 'error': str(e)})}\n\n"

        return StreamingResponse(
            generate_sse(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    background_tasks.add_task(_generate_in_background, agent, thread_id, message_id, request.user_id)
    return SendMessageResponse(message_id=message_id)


@agent_router.get("/v0/threads/{thread_id}/approvals", response_model=list[tl.agent.PendingApproval])
async def list_approvals(thread_id: str, store: tl.agent.MessageStore = Depends(get_store)):
    """Tool calls waiting for a decision."""
    await _require_thread(store, thread_id)
    return await tl.agent.list_pending_approvals(store, thread_id)


@agent_router.post("/v0/threads/{thread_id}/approvals/{approval_id}", response_model=ApprovalResponse)
async def post_approval(
    thread_id: str,
    approval_id: str,
    background_tasks: BackgroundTasks,
    request: ApprovalRequest = Body(...),
    agent: tl.agent.Agent = Depends(get_agent),
    workflow_agent: tl.agent.Agent = Depends(get_workflow_agent),
    run_subtask: tl.workflow.SubtaskRunner = Depends(get_subtask_runner),
    registry: tl.workflow.RunRegistry = Depends(get_run_registry),
):
    """
    Approve or deny a pending tool call. Approved calls run now; denied calls are recorded
    as execution-denied. The resolution that closes the last open approval of its turn
    resumes generation in the background (or the owning workflow run).
    Unknown or already-resolved approvals return 404.
    """
    run = registry.find_by_thread(thread_id)
    owner = workflow_agent if run is not None else agent
    resolved = await tl.agent.resolve_approval(
        owner,
        thread_id,
        approval_id,
        approved=request.approved,
        reason=request.reason,
        user_id=request.user_id,
    )
    if resolved.ready_to_continue:
        if run is not None and run.status == "awaiting-approval":
            background_tasks.add_task(
                _drive_in_background, workflow_agent, run, run_subtask, resolved.continuation_message_id
            )
        elif run is None:
            background_tasks.add_task(
                _generate_in_background, agent, thread_id, resolved.continuation_message_id, request.user_id
            )
    return ApprovalResponse(
        continuation_message_id=resolved.continuation_message_id,
        approved=resolved.approved,
        result=resolved.result,
        remaining_approvals=len(resolved.remaining),
    )


@agent_router.post("/v0/workflows", response_model=StartWorkflowResponse)
async def start_workflow(
    background_tasks: BackgroundTasks,
    request: StartWorkflowRequest = Body(...),
    agent: tl.agent.Agent = Depends(get_workflow_agent),
    run_subtask: tl.workflow.SubtaskRunner = Depends(get_subtask_runner),
    registry: tl.workflow.RunRegistry = Depends(get_run_registry),
):
    """Start a research workflow run on a new thread; poll GET /v0/workflows/{run_id}."""
    run = await tl.workflow.create_workflow_run(
        agent,
        request.task,
        user_id=request.user_id,
        max_iterations=request.max_iterations,
    )
    registry.add(run)
    background_tasks.add_task(_drive_in_background, agent, run, run_subtask)
    return StartWorkflowResponse(run_id=run.run_id, thread_id=run.thread_id)


@agent_router.get("/v0/workflows/{run_id}", response_model=tl.workflow.WorkflowRun)
async def get_workflow(run_id: str, registry: tl.workflow.RunRegistry = Depends(get_run_registry)):
    return registry.get(run_id)


@agent_router.get("/v0/tools", response_model=list[ToolInfo])
async def get_tools(agent: tl.agent.Agent = Depends(get_agent)):
    """Tool metadata for the chat agent, including whether calls need approval."""
    return [
        ToolInfo(
            name=tool.name,
            description=tool.description,
            needs_approval=tl.agent.tool_registry.approval_policy_kind(tool),
        )
        for tool in agent.tools.values()
    ]
