"""
Construction-time validation for tool sets and agents.
Returns findings instead of warning through process-wide state; callers decide
whether to log or raise.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, Literal

from jsonschema.exceptions import SchemaError
from jsonschema.validators import validator_for

if TYPE_CHECKING:
    from .tool_registry import ToolDefinition

RESERVED_TOOL_NAMES: frozenset[str] = frozenset({"subagent_completion"})


@dataclass(frozen=True)
class Finding:
    level: Literal["error", "warning"]
    code: str
    message: str
    tool_name: str | None = None


def validate_tool_definitions(
    definitions: Iterable["ToolDefinition"],
    *,
    reserved_names: Iterable[str] = (),
) -> list[Finding]:
    findings: list[Finding] = []
    reserved = set(reserved_names)
    seen: set[str] = set()
    for tool in definitions:
        if tool.name in seen:
            findings.append(Finding("error", "duplicate-name", f"Tool {tool.name!r} is defined more than once", tool.name))
        seen.add(tool.name)
        if tool.name in reserved:
            findings.append(Finding(
                "error",
                "reserved-name",
                f"Tool name {tool.name!r} is reserved for injected results",
                tool.name,
            ))
        if tool.execute is None and tool.output_schema is None:
            findings.append(Finding(
                "error",
                "missing-execute",
                f"Tool {tool.name!r} must provide an execute function, an output_schema, or both",
                tool.name,
            ))
        if tool.execute is None and tool.needs_approval is not False:
            findings.append(Finding(
                "warning",
                "approval-without-execute",
                f"Tool {tool.name!r} requests approval but has nothing to execute once approved",
                tool.name,
            ))
        if not (tool.description or "").strip():
            findings.append(Finding("warning", "empty-description", f"Tool {tool.name!r} has no description", tool.name))
        try:
            validator_for(tool.input_schema).check_schema(tool.input_schema)
        except SchemaError as e:
            findings.append(Finding(
                "error",
                "invalid-input-schema",
                f"Tool {tool.name!r} has an invalid input schema: {e.message}",
                tool.name,
            ))
        if tool.input_schema.get("type", "object") != "object":
            findings.append(Finding(
                "error",
                "invalid-input-schema",
                f"Tool {tool.name!r} input schema must describe an object",
                tool.name,
            ))
    return findings


def errors_only(findings: Iterable[Finding]) -> list[Finding]:
    return [f for f in findings if f.level == "error"]


def format_findings(findings: Iterable[Finding]) -> str:
    return "; ".join(f"[{f.code}] {f.message}" for f in findings)


def validate_agent(agent) -> list[Finding]:
    """Findings for an agent's tools and loop settings. Tools may still be a plain list here."""
    tools = agent.tools.values() if hasattr(agent.tools, "values") else agent.tools
    reserved = RESERVED_TOOL_NAMES if agent.delegation else ()
    findings = validate_tool_definitions(tools, reserved_names=reserved)
    if agent.max_steps is not None and agent.max_steps < 1:
        findings.append(Finding("error", "invalid-max-steps", f"max_steps must be at least 1, got {agent.max_steps}"))
    if agent.tool_error_mode not in (None, "text", "json"):
        findings.append(Finding(
            "error",
            "invalid-tool-error-mode",
            f"tool_error_mode must be 'text' or 'json', got {agent.tool_error_mode!r}",
        ))
    if not (agent.instructions or "").strip():
        findings.append(Finding("warning", "missing-instructions", f"Agent {agent.name!r} has no instructions"))
    return findings
