"""Tests for tool set and agent validation."""
import pytest

import threadloop as tl
from threadloop.agent.tool_registry import plain_tool
from threadloop.agent.validation import errors_only, format_findings, validate_tool_definitions
from threadloop.llm import ScriptedModel

SCHEMA = {"type": "object", "properties": {}}


def _codes(findings):
    return {f.code for f in findings}


def test_valid_tools_have_no_findings():
    tools = [tl.agent.tools.DELETE_FILE, tl.agent.tools.TRANSFER_MONEY, tl.agent.tools.CHECK_BALANCE]
    assert validate_tool_definitions(tools) == []


def test_missing_execute_and_output_schema():
    findings = validate_tool_definitions([plain_tool("t", "T", SCHEMA)])
    assert "missing-execute" in _codes(errors_only(findings))


def test_approval_without_execute_is_a_warning():
    tool = plain_tool("t", "T", SCHEMA, output_schema={"type": "string"}, needs_approval=True)
    findings = validate_tool_definitions([tool])
    assert errors_only(findings) == []
    assert _codes(findings) == {"approval-without-execute"}


def test_invalid_input_schema():
    bad_type = plain_tool("t", "T", {"type": "string"}, lambda p, o: 1)
    broken = plain_tool("u", "U", {"type": "object", "properties": {"x": {"type": 12}}}, lambda p, o: 1)
    findings = validate_tool_definitions([bad_type, broken])
    assert [f.tool_name for f in findings if f.code == "invalid-input-schema"] == ["t", "u"]


def test_empty_description_warning():
    findings = validate_tool_definitions([plain_tool("t", "  ", SCHEMA, lambda p, o: 1)])
    assert [(f.level, f.code) for f in findings] == [("warning", "empty-description")]


def test_format_findings():
    findings = validate_tool_definitions([plain_tool("t", "T", SCHEMA)])
    assert format_findings(findings).startswith("[missing-execute]")


def test_agent_rejects_reserved_tool_name_with_delegation(store):
    mine = plain_tool("subagent_completion", "Mine", SCHEMA, lambda p, o: 1)
    with pytest.raises(tl.common.ConfigurationError, match="reserved-name"):
        tl.agent.Agent(name="a", model=ScriptedModel(), instructions="x", tools=[mine], store=store, delegation=True)
    agent = tl.agent.Agent(name="a", model=ScriptedModel(), instructions="x", tools=[mine], store=store)
    assert "subagent_completion" in agent.tools


def test_agent_delegation_adds_completion_tool(store):
    agent = tl.agent.build_research_agent(ScriptedModel(), store=store)
    assert "subagent_completion" in agent.tools
    assert "delegate_to_subagent" in agent.tools


def test_agent_rejects_bad_loop_settings(store):
    with pytest.raises(tl.common.ConfigurationError, match="invalid-max-steps"):
        tl.agent.Agent(name="a", model=ScriptedModel(), instructions="x", store=store, max_steps=0)
    with pytest.raises(tl.common.ConfigurationError, match="invalid-tool-error-mode"):
        tl.agent.Agent(name="a", model=ScriptedModel(), instructions="x", store=store, tool_error_mode="xml")


def test_agent_warns_without_instructions(store, caplog):
    agent = tl.agent.Agent(name="quiet", model=ScriptedModel(), store=store)
    assert _codes(agent.findings) == {"missing-instructions"}
    assert "missing-instructions" in caplog.text
