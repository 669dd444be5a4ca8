"""Tests for the tool registry: registration, approval policies and dispatch."""
import json

import pytest

import threadloop as tl
from threadloop.agent.tool_registry import (
    ToolCallOptions,
    ToolContext,
    approval_policy_kind,
    create_tool,
    create_tool_model_output,
    dispatch,
    dispatch_all,
    get_error_message,
    merge_tool_sets,
    needs_approval,
    parse_tool_input,
    plain_tool,
    register,
    tool_definitions,
)
from threadloop.agent.messages import ToolCallPart

OBJECT_SCHEMA = {
    "type": "object",
    "properties": {"x": {"type": "integer"}},
    "required": ["x"],
}


def _call(name, input=None, tool_call_id="call-1"):
    return ToolCallPart(tool_call_id=tool_call_id, tool_name=name, input=input if input is not None else {})


def _ctx(**kwargs):
    return ToolContext(thread_id=kwargs.pop("thread_id", "thread-1"), **kwargs)


def test_register_returns_immutable_mapping():
    tool = plain_tool("double", "Double x", OBJECT_SCHEMA, lambda params, options: params["x"] * 2)
    tools = register([tool])
    assert tools["double"] is tool
    with pytest.raises(TypeError):
        tools["other"] = tool


def test_register_rejects_duplicates():
    tool = plain_tool("double", "Double x", OBJECT_SCHEMA, lambda params, options: 0)
    with pytest.raises(tl.common.ConfigurationError, match="duplicate-name"):
        register([tool, tool])


def test_register_rejects_reserved_name():
    tool = plain_tool("subagent_completion", "Mine", OBJECT_SCHEMA, lambda params, options: 0)
    with pytest.raises(tl.common.ConfigurationError, match="reserved-name"):
        register([tool], reserved_names={"subagent_completion"})


def test_merge_tool_sets_later_wins():
    a = plain_tool("t", "first", OBJECT_SCHEMA, lambda p, o: 1)
    b = plain_tool("t", "second", OBJECT_SCHEMA, lambda p, o: 2)
    merged = merge_tool_sets(register([a]), None, register([b]))
    assert merged["t"].description == "second"


def test_tool_definitions_openai_format():
    tools = register([tl.agent.tools.DELETE_FILE, tl.agent.tools.CHECK_BALANCE])
    defs = tool_definitions(tools)
    assert [d["function"]["name"] for d in defs] == ["delete_file", "check_balance"]
    for d in defs:
        assert d["type"] == "function"
        assert d["function"]["parameters"]["type"] == "object"
        assert d["function"]["description"]


def test_approval_policy_kind():
    assert approval_policy_kind(tl.agent.tools.DELETE_FILE) == "always"
    assert approval_policy_kind(tl.agent.tools.CHECK_BALANCE) == "never"
    assert approval_policy_kind(tl.agent.tools.TRANSFER_MONEY) == "conditional"


def test_parse_tool_input():
    assert parse_tool_input('{"x": 1}') == {"x": 1}
    assert parse_tool_input("") == {}
    assert parse_tool_input(None) == {}
    assert parse_tool_input({"x": 2}) == {"x": 2}
    with pytest.raises(ValueError, match="Invalid JSON"):
        parse_tool_input("{not json")


def test_get_error_message():
    assert get_error_message(None) == "unknown error"
    assert get_error_message("boom") == "boom"
    assert get_error_message(RuntimeError("bad")) == "bad"
    assert get_error_message(KeyError()) == "KeyError"
    assert json.loads(get_error_message({"code": 1})) == {"code": 1}


@pytest.mark.asyncio
async def test_needs_approval_constant_policies():
    tools = register([tl.agent.tools.DELETE_FILE, tl.agent.tools.CHECK_BALANCE])
    assert await needs_approval(tools, _ctx(), _call("delete_file", {"filename": "a.txt"})) is True
    assert await needs_approval(tools, _ctx(), _call("check_balance", {"account_id": "1"})) is False


@pytest.mark.asyncio
async def test_needs_approval_conditional_policy():
    tools = register([tl.agent.tools.TRANSFER_MONEY])
    small = _call("transfer_money", {"amount": 50, "to_account": "A"})
    large = _call("transfer_money", {"amount": 500, "to_account": "A"})
    assert await needs_approval(tools, _ctx(), small) is False
    assert await needs_approval(tools, _ctx(), large) is True


@pytest.mark.asyncio
async def test_needs_approval_policy_receives_options():
    seen = []

    def policy(params, options):
        seen.append(options)
        return False

    tools = register([plain_tool("t", "T", OBJECT_SCHEMA, lambda p, o: 1, needs_approval=policy)])
    await needs_approval(tools, None, _call("t", {"x": 1}, tool_call_id="call-9"))
    assert isinstance(seen[0], ToolCallOptions)
    assert seen[0].tool_call_id == "call-9"


@pytest.mark.asyncio
async def test_needs_approval_context_bound_without_context_raises():
    tools = register([tl.agent.tools.TRANSFER_MONEY])
    with pytest.raises(tl.common.ConfigurationError, match="context-bound"):
        await needs_approval(tools, None, _call("transfer_money", {"amount": 500, "to_account": "A"}))


@pytest.mark.asyncio
async def test_needs_approval_skips_policy_for_invalid_input():
    calls = []

    def policy(params, options):
        calls.append(params)
        return True

    tools = register([plain_tool("t", "T", OBJECT_SCHEMA, lambda p, o: 1, needs_approval=policy)])
    assert await needs_approval(tools, None, _call("t", "{not json")) is False
    assert await needs_approval(tools, None, _call("t", {"x": "not an integer"})) is False
    assert calls == []

    banking = register([tl.agent.tools.TRANSFER_MONEY])
    assert await needs_approval(banking, _ctx(), _call("transfer_money", "{not json")) is False


@pytest.mark.asyncio
async def test_needs_approval_policy_error_is_configuration_error():
    def policy(params, options):
        raise KeyError("limit")

    tools = register([plain_tool("t", "T", OBJECT_SCHEMA, lambda p, o: 1, needs_approval=policy)])
    with pytest.raises(tl.common.ConfigurationError, match="Approval policy of tool 't' failed"):
        await needs_approval(tools, None, _call("t", {"x": 1}))


@pytest.mark.asyncio
async def test_needs_approval_unknown_tool_is_false():
    assert await needs_approval(register([]), _ctx(), _call("missing")) is False


@pytest.mark.asyncio
async def test_dispatch_success_text_and_json():
    tools = register([
        plain_tool("echo", "Echo", OBJECT_SCHEMA, lambda p, o: f"x={p['x']}"),
        plain_tool("info", "Info", OBJECT_SCHEMA, lambda p, o: {"x": p["x"]}),
    ])
    text = await dispatch(tools, None, _call("echo", {"x": 3}))
    assert text.output.type == "text"
    assert text.output.value == "x=3"
    assert text.is_error is False

    data = await dispatch(tools, None, _call("info", '{"x": 4}'))
    assert data.output.type == "json"
    assert data.output.value == {"x": 4}


@pytest.mark.asyncio
async def test_dispatch_passes_context_to_bound_tools():
    seen = {}

    async def execute(ctx, params, options):
        seen["ctx"] = ctx
        seen["options"] = options
        return "ok"

    tools = register([create_tool("bound", "Bound", OBJECT_SCHEMA, execute)])
    ctx = _ctx(user_id="u1", message_id="m1")
    await dispatch(tools, ctx, _call("bound", {"x": 1}, tool_call_id="call-2"))
    assert seen["ctx"] is ctx
    assert seen["options"].tool_call_id == "call-2"


@pytest.mark.asyncio
async def test_dispatch_unknown_tool_returns_error():
    outcome = await dispatch(register([]), _ctx(), _call("nonexistent_tool"))
    assert outcome.is_error
    assert outcome.output.type == "error-text"
    assert "Unknown tool" in outcome.output.value


@pytest.mark.asyncio
async def test_dispatch_invalid_input_returns_error():
    tools = register([plain_tool("echo", "Echo", OBJECT_SCHEMA, lambda p, o: "never")])
    outcome = await dispatch(tools, None, _call("echo", {"x": "not-an-int"}))
    assert outcome.is_error
    assert "Invalid input for tool echo" in outcome.output.value

    outcome = await dispatch(tools, None, _call("echo", "{broken"))
    assert outcome.is_error
    assert "Invalid JSON" in outcome.output.value


@pytest.mark.asyncio
async def test_dispatch_exception_becomes_error_output():
    def explode(params, options):
        raise RuntimeError("disk on fire")

    tools = register([plain_tool("boom", "Boom", OBJECT_SCHEMA, explode)])
    outcome = await dispatch(tools, None, _call("boom", {"x": 1}))
    assert outcome.is_error
    assert outcome.output.value == "disk on fire"

    outcome = await dispatch(tools, None, _call("boom", {"x": 1}), error_mode="json")
    assert outcome.output.type == "error-json"
    assert outcome.output.value == {"error": "disk on fire"}


@pytest.mark.asyncio
async def test_dispatch_output_only_tool_returns_none():
    tool = plain_tool("answer", "Client answers", OBJECT_SCHEMA, output_schema={"type": "string"})
    assert await dispatch(register([tool]), None, _call("answer", {"x": 1})) is None


@pytest.mark.asyncio
async def test_dispatch_to_model_output():
    tool = plain_tool(
        "shout",
        "Shout",
        OBJECT_SCHEMA,
        lambda p, o: "hi",
        to_model_output=lambda tool_call_id, input, output: tl.agent.TextOutput(value=output.upper()),
    )
    outcome = await dispatch(register([tool]), None, _call("shout", {"x": 1}))
    assert outcome.output.value == "HI"
    assert outcome.raw == "hi"


@pytest.mark.asyncio
async def test_dispatch_all_keeps_positions():
    tools = register([plain_tool("echo", "Echo", OBJECT_SCHEMA, lambda p, o: str(p["x"]))])
    calls = [_call("echo", {"x": i}, tool_call_id=f"call-{i}") for i in range(4)]
    outcomes = await dispatch_all(tools, None, calls)
    assert [o.tool_call_id for o in outcomes] == ["call-0", "call-1", "call-2", "call-3"]
    assert [o.output.value for o in outcomes] == ["0", "1", "2", "3"]


@pytest.mark.asyncio
async def test_create_tool_model_output_serializes_values():
    output = await create_tool_model_output(None, None, _call("t"), {"when": tl.agent.Usage(total_tokens=2)})
    assert output.type == "json"
    assert output.value["when"]["total_tokens"] == 2


@pytest.mark.asyncio
async def test_tool_outcome_to_part():
    tools = register([plain_tool("echo", "Echo", OBJECT_SCHEMA, lambda p, o: "done")])
    part = (await dispatch(tools, None, _call("echo", {"x": 1}))).to_part()
    assert part.type == "tool-result"
    assert part.tool_call_id == "call-1"
    assert part.output.value == "done"
    assert not part.denied


@pytest.mark.asyncio
async def test_delete_file_tool_updates_files():
    files = {"important.txt"}
    tools = register([tl.agent.tools.DELETE_FILE])
    outcome = await dispatch(tools, _ctx(deps={"files": files}), _call("delete_file", {"filename": "important.txt"}))
    assert outcome.output.value == "Successfully deleted file: important.txt"
    assert files == set()

    missing = await dispatch(tools, _ctx(deps={"files": files}), _call("delete_file", {"filename": "important.txt"}))
    assert missing.is_error
    assert "File not found" in missing.output.value


@pytest.mark.asyncio
async def test_banking_tools():
    balances = {"A": 10}
    tools = register([tl.agent.tools.TRANSFER_MONEY, tl.agent.tools.CHECK_BALANCE])
    ctx = _ctx(deps={"balances": balances})
    outcome = await dispatch(tools, ctx, _call("transfer_money", {"amount": 25, "to_account": "A"}))
    assert outcome.output.value == "Transferred $25 to account A"
    assert balances["A"] == 35
    outcome = await dispatch(tools, ctx, _call("check_balance", {"account_id": "A"}))
    assert outcome.output.value == "Account A has a balance of $35"
