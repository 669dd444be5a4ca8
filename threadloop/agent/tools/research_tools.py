"""
Research tools for the delegating workflow agent.
delegate_to_subagent only acknowledges the request: the workflow loop runs the sub-tasks and
injects their results back as a subagent_completion call.
"""
from __future__ import annotations

import logging
from typing import Any

from ..scratchpad import Scratchpad, get_scratchpad
from ..tool_registry import ToolCallOptions, ToolContext, create_tool, plain_tool

logger = logging.getLogger(__name__)

DELEGATE_TOOL_NAME = "delegate_to_subagent"
SUBAGENT_COMPLETION_TOOL_NAME = "subagent_completion"


def scratchpad_for(ctx: ToolContext) -> Scratchpad:
    if isinstance(ctx.deps, dict) and ctx.deps.get("scratchpad") is not None:
        return ctx.deps["scratchpad"]
    return get_scratchpad()


def internet_search(params: dict, options: ToolCallOptions) -> str:
    query = params["query"]
    logger.info(f"Searching for: {query}")
    return f'Search results for "{query}":\n1. [Mock Result] Relevant information about {query}...'


async def update_scratchpad(ctx: ToolContext, params: dict, options: ToolCallOptions) -> str:
    await scratchpad_for(ctx).set(ctx.thread_id, params["content"])
    return "Scratchpad updated."


async def read_scratchpad(ctx: ToolContext, params: dict, options: ToolCallOptions) -> str:
    content = await scratchpad_for(ctx).get(ctx.thread_id)
    return content if content is not None else "Scratchpad is empty."


def delegate_to_subagent(params: dict, options: ToolCallOptions) -> dict[str, Any]:
    return {
        "status": "DELEGATION_STARTED",
        "title": params["task_title"],
        "prompt": params["task_prompt"],
    }


def subagent_completion(params: dict, options: ToolCallOptions) -> str:
    return f"Received results for {len(params['results'])} sub-agent(s)."


INTERNET_SEARCH = plain_tool(
    name="internet_search",
    description="Run a web search to find information on the internet",
    input_schema={
        "type": "object",
        "properties": {"query": {"type": "string", "description": "The search query"}},
        "required": ["query"],
        "additionalProperties": False,
    },
    execute=internet_search,
)

UPDATE_SCRATCHPAD = create_tool(
    name="update_scratchpad",
    description="Update the scratchpad with your current plan, findings, or final report.",
    input_schema={
        "type": "object",
        "properties": {"content": {"type": "string", "description": "The new content for the scratchpad"}},
        "required": ["content"],
        "additionalProperties": False,
    },
    execute=update_scratchpad,
)

READ_SCRATCHPAD = create_tool(
    name="read_scratchpad",
    description="Read the current contents of the scratchpad.",
    input_schema={"type": "object", "properties": {}, "additionalProperties": False},
    execute=read_scratchpad,
)

DELEGATE_TO_SUBAGENT = plain_tool(
    name=DELEGATE_TOOL_NAME,
    description="Request help from a sub-agent for a specific task. Results will be injected later.",
    input_schema={
        "type": "object",
        "properties": {
            "task_title": {"type": "string", "description": "Short title for the task"},
            "task_prompt": {"type": "string", "description": "Detailed instructions for the sub-agent"},
        },
        "required": ["task_title", "task_prompt"],
        "additionalProperties": False,
    },
    execute=delegate_to_subagent,
)

# Added by Agent(delegation=True); agents must not define their own tool under this name.
SUBAGENT_COMPLETION = plain_tool(
    name=SUBAGENT_COMPLETION_TOOL_NAME,
    description="Internal tool used to inject sub-agent results. Do not call this yourself.",
    input_schema={
        "type": "object",
        "properties": {
            "results": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "title": {"type": "string"},
                        "output": {"type": "string"},
                        "error": {"type": "boolean"},
                    },
                    "required": ["title", "output"],
                },
            },
        },
        "required": ["results"],
        "additionalProperties": False,
    },
    execute=subagent_completion,
)
