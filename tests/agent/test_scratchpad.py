"""Tests for the scratchpad and the research tools that use it."""
from unittest.mock import AsyncMock, MagicMock

import pytest

import threadloop as tl
from threadloop.agent.scratchpad import MongoScratchpad
from threadloop.agent.tool_registry import ToolContext, dispatch, register
from threadloop.agent.messages import ToolCallPart


def _call(name, input):
    return ToolCallPart(tool_call_id=f"call-{name}", tool_name=name, input=input)


@pytest.mark.asyncio
async def test_in_memory_scratchpad(scratchpad):
    assert await scratchpad.get("t1") is None
    await scratchpad.set("t1", "plan")
    assert await scratchpad.get("t1") == "plan"
    assert await scratchpad.get("t2") is None


@pytest.mark.asyncio
async def test_mongo_scratchpad_upserts():
    collection = MagicMock()
    collection.update_one = AsyncMock()
    collection.find_one = AsyncMock(return_value={"thread_id": "t1", "content": "notes"})
    db = MagicMock()
    db.__getitem__.return_value = collection

    pad = MongoScratchpad(db)
    await pad.set("t1", "notes")
    assert await pad.get("t1") == "notes"

    db.__getitem__.assert_called_with("agent_scratchpads")
    args, kwargs = collection.update_one.call_args
    assert args[0] == {"thread_id": "t1"}
    assert args[1]["$set"]["content"] == "notes"
    assert kwargs["upsert"] is True


@pytest.mark.asyncio
async def test_scratchpad_tools_use_deps(scratchpad):
    tools = register([tl.agent.tools.UPDATE_SCRATCHPAD, tl.agent.tools.READ_SCRATCHPAD])
    ctx = ToolContext(thread_id="t1", deps={"scratchpad": scratchpad})

    empty = await dispatch(tools, ctx, _call("read_scratchpad", {}))
    assert empty.output.value == "Scratchpad is empty."
    await dispatch(tools, ctx, _call("update_scratchpad", {"content": "# Findings"}))
    assert await scratchpad.get("t1") == "# Findings"
    read = await dispatch(tools, ctx, _call("read_scratchpad", {}))
    assert read.output.value == "# Findings"


@pytest.mark.asyncio
async def test_search_and_delegate_tools():
    tools = register([tl.agent.tools.INTERNET_SEARCH, tl.agent.tools.DELEGATE_TO_SUBAGENT])
    search = await dispatch(tools, None, _call("internet_search", {"query": "solid-state batteries"}))
    assert "solid-state batteries" in search.output.value
    delegated = await dispatch(
        tools, None, _call("delegate_to_subagent", {"task_title": "Costs", "task_prompt": "Compare costs"})
    )
    assert delegated.output.value == {"status": "DELEGATION_STARTED", "title": "Costs", "prompt": "Compare costs"}
