"""Tests for parallel delegation and result injection."""
import asyncio

import pytest

import threadloop as tl
from threadloop.agent.messages import ToolCallPart
from threadloop.llm import ScriptedModel, text_turn
from threadloop.workflow import echo_subtask_runner, fan_out_delegates, inject_subtask_results, make_subagent_runner


def _delegate(title, prompt="Research it", call_id=None):
    return ToolCallPart(
        tool_call_id=call_id or f"call-{title}",
        tool_name="delegate_to_subagent",
        input={"task_title": title, "task_prompt": prompt},
    )


@pytest.mark.asyncio
async def test_echo_runner():
    assert await echo_subtask_runner("Topic A", "prompt", "thread-1") == "Detailed research results for: Topic A"


@pytest.mark.asyncio
async def test_fan_out_runs_concurrently_and_keeps_order():
    started = []
    release = asyncio.Event()

    async def runner(title, prompt, parent_thread_id, user_id=None):
        started.append(title)
        if len(started) == 3:
            release.set()
        await release.wait()
        return f"done {title}"

    results = await asyncio.wait_for(
        fan_out_delegates([_delegate("a"), _delegate("b"), _delegate("c")], runner, parent_thread_id="t1"),
        timeout=5,
    )
    assert [r.output for r in results] == ["done a", "done b", "done c"]
    assert not any(r.error for r in results)


@pytest.mark.asyncio
async def test_one_failure_does_not_sink_the_batch():
    async def runner(title, prompt, parent_thread_id, user_id=None):
        if title == "b":
            raise RuntimeError("search backend down")
        return f"done {title}"

    results = await fan_out_delegates([_delegate("a"), _delegate("b"), _delegate("c")], runner, parent_thread_id="t1")

    assert [(r.title, r.error) for r in results] == [("a", False), ("b", True), ("c", False)]
    assert results[1].output == "Sub-task failed: search backend down"


@pytest.mark.asyncio
async def test_invalid_delegate_request():
    bad = ToolCallPart(tool_call_id="call-x", tool_name="delegate_to_subagent", input={"task_title": "x"})
    results = await fan_out_delegates([bad], echo_subtask_runner, parent_thread_id="t1")
    assert results[0].error
    assert "task_prompt is required" in results[0].output


@pytest.mark.asyncio
async def test_inject_subtask_results(store):
    thread_id = await store.create_thread()
    results = [
        tl.workflow.DelegateResult(title="a", output="found a"),
        tl.workflow.DelegateResult(title="b", output="Sub-task failed: x", error=True),
    ]

    message_id = await inject_subtask_results(store, thread_id, results, agent_name="Deep Agent")

    call_doc, result_doc = await tl.agent.list_all_messages(store, thread_id)
    assert result_doc.id == message_id
    call = call_doc.message.content[0]
    assert call.tool_name == "subagent_completion"
    assert call.tool_call_id.startswith("subagent-results-")
    assert call.input == {"results": [r.model_dump() for r in results]}
    result = result_doc.message.content[0]
    assert result.tool_call_id == call.tool_call_id
    assert result.output.type == "json"
    assert result.output.value["success"] is True
    assert result.output.value["message"] == "Here are the results from your delegated tasks."
    assert result.output.value["results"][1] == {"title": "b", "output": "Sub-task failed: x", "error": True}


@pytest.mark.asyncio
async def test_subagent_runner_uses_its_own_thread(store):
    subagent = tl.agent.build_subagent(ScriptedModel([text_turn("Sub findings")]), store=store)
    runner = make_subagent_runner(subagent)

    output = await runner("Market size", "Estimate the market size", "parent-thread", "u1")

    assert output == "Sub findings"
    threads = await store.list_threads("u1")
    assert [t.title for t in threads] == ["Sub-task: Market size"]
    docs = await tl.agent.list_all_messages(store, threads[0].id)
    assert docs[0].text == "Estimate the market size"
