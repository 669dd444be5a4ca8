"""
Tool definitions and dispatch for agents.
register() turns definitions into an immutable ToolSet; dispatch() runs one tool call with an
explicitly passed ToolContext and always returns a normalized output instead of raising.
tool_definitions() renders the ToolSet in OpenAI function-calling format for the model.
"""
from __future__ import annotations

import asyncio
import inspect
import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Iterable, Literal, Mapping, Sequence

import jsonschema

from ..common.errors import ConfigurationError
from .messages import (
    ErrorJsonOutput,
    ErrorTextOutput,
    JsonOutput,
    MessageDoc,
    TextOutput,
    ToolCallPart,
    ToolOutput,
    ToolResultPart,
)
from .validation import errors_only, format_findings, validate_tool_definitions

logger = logging.getLogger(__name__)

ToolErrorMode = Literal["text", "json"]
ToolBinding = Literal["context", "plain"]


@dataclass(frozen=True)
class ToolContext:
    """Per-call execution context. Built once per dispatch; never rebound or shared between calls."""

    thread_id: str
    user_id: str | None = None
    message_id: str | None = None
    agent_name: str | None = None
    deps: Any = None


@dataclass(frozen=True)
class ToolCallOptions:
    """Call metadata handed to execute and to approval policies."""

    tool_call_id: str
    messages: Sequence[MessageDoc] = ()


ApprovalPolicy = bool | Callable[..., bool | Awaitable[bool]]


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    input_schema: dict[str, Any]
    execute: Callable[..., Any] | None = None
    needs_approval: ApprovalPolicy = False
    output_schema: dict[str, Any] | None = None
    to_model_output: Callable[..., ToolOutput | Awaitable[ToolOutput]] | None = None
    binding: ToolBinding = "context"
    title: str | None = None


def create_tool(
    name: str,
    description: str,
    input_schema: dict[str, Any],
    execute: Callable[..., Any] | None = None,
    *,
    needs_approval: ApprovalPolicy = False,
    output_schema: dict[str, Any] | None = None,
    to_model_output: Callable[..., Any] | None = None,
    title: str | None = None,
) -> ToolDefinition:
    """
    Context-bound tool. execute(ctx, input, options) and a callable needs_approval(ctx, input, options)
    receive the ToolContext of the call as their first argument.
    """
    return ToolDefinition(
        name=name,
        description=description,
        input_schema=input_schema,
        execute=execute,
        needs_approval=needs_approval,
        output_schema=output_schema,
        to_model_output=to_model_output,
        binding="context",
        title=title,
    )


def plain_tool(
    name: str,
    description: str,
    input_schema: dict[str, Any],
    execute: Callable[..., Any] | None = None,
    *,
    needs_approval: ApprovalPolicy = False,
    output_schema: dict[str, Any] | None = None,
    to_model_output: Callable[..., Any] | None = None,
    title: str | None = None,
) -> ToolDefinition:
    """Context-free tool: execute(input, options) and needs_approval(input, options)."""
    return ToolDefinition(
        name=name,
        description=description,
        input_schema=input_schema,
        execute=execute,
        needs_approval=needs_approval,
        output_schema=output_schema,
        to_model_output=to_model_output,
        binding="plain",
        title=title,
    )


ToolSet = Mapping[str, ToolDefinition]


def register(definitions: Iterable[ToolDefinition], *, reserved_names: Iterable[str] = ()) -> ToolSet:
    """
    Validate definitions and return an immutable name -> definition mapping.
    Raises ConfigurationError when any error-level finding is present; warnings are logged.
    """
    definitions = list(definitions)
    findings = validate_tool_definitions(definitions, reserved_names=reserved_names)
    errors = errors_only(findings)
    if errors:
        raise ConfigurationError(format_findings(errors))
    for f in findings:
        logger.warning(f"Tool registration: [{f.code}] {f.message}")
    return MappingProxyType({d.name: d for d in definitions})


def merge_tool_sets(*tool_sets: ToolSet | None) -> ToolSet:
    """Later sets win on name clashes."""
    merged: dict[str, ToolDefinition] = {}
    for tool_set in tool_sets:
        if tool_set:
            merged.update(tool_set)
    return MappingProxyType(merged)


def _json_serial_default(obj: Any) -> Any:
    """Convert non-JSON-serializable values for tool result payloads."""
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json")
    raise TypeError(f"Object of type {type(obj).__name__!r} is not JSON serializable")


def to_json_value(value: Any) -> Any:
    if value is None:
        return None
    return json.loads(json.dumps(value, default=_json_serial_default))


def get_error_message(error: Any) -> str:
    if error is None:
        return "unknown error"
    if isinstance(error, str):
        return error
    if isinstance(error, BaseException):
        return str(error) or type(error).__name__
    return json.dumps(to_json_value(error))


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


@dataclass
class ToolOutcome:
    tool_call_id: str
    tool_name: str
    output: ToolOutput
    is_error: bool = False
    raw: Any = field(default=None, repr=False)

    def to_part(self) -> ToolResultPart:
        return ToolResultPart(
            tool_call_id=self.tool_call_id,
            tool_name=self.tool_name,
            output=self.output,
            is_error=self.is_error,
        )


async def create_tool_model_output(
    tool: ToolDefinition | None,
    context: ToolContext | None,
    tool_call: ToolCallPart,
    output: Any,
    error_mode: ToolErrorMode | None = None,
) -> ToolOutput:
    """
    Normalize a raw tool result. error_mode is set only when output is an error.
    Plain strings become text, anything else json, unless the tool maps its own output.
    """
    if error_mode == "text":
        return ErrorTextOutput(value=get_error_message(output))
    if error_mode == "json":
        return ErrorJsonOutput(value={"error": get_error_message(output)})

    if tool is not None and tool.to_model_output is not None:
        if tool.binding == "context":
            mapped = tool.to_model_output(context, tool_call.tool_call_id, tool_call.input, output)
        else:
            mapped = tool.to_model_output(tool_call.tool_call_id, tool_call.input, output)
        return await _maybe_await(mapped)

    if isinstance(output, str):
        return TextOutput(value=output)
    return JsonOutput(value=to_json_value(output))


def _require_context(tool: ToolDefinition, context: ToolContext | None, what: str) -> None:
    if tool.binding == "context" and context is None:
        raise ConfigurationError(
            f"Tool {tool.name!r} is context-bound: {what} must be called with a ToolContext "
            "(dispatch it through an agent, which supplies threadId, userId and messageId)"
        )


def parse_tool_input(raw: Any) -> Any:
    """Tool input arrives as a dict or as the model's JSON string. Raises ValueError on bad JSON."""
    if isinstance(raw, str):
        if not raw.strip():
            return {}
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON arguments: {e}") from e
    return {} if raw is None else raw


async def needs_approval(
    tool_set: ToolSet,
    context: ToolContext | None,
    tool_call: ToolCallPart,
    messages: Sequence[MessageDoc] = (),
) -> bool:
    """
    Evaluate the tool's approval policy. Booleans are returned as-is; callables are invoked with
    (context, input, options) for context-bound tools, (input, options) otherwise, and awaited
    when they return an awaitable. Unknown tools never need approval (they fail on dispatch),
    and neither does input that is not valid JSON or fails the tool's input schema.
    A policy that raises is reported as ConfigurationError.
    """
    tool = tool_set.get(tool_call.tool_name)
    if tool is None:
        return False
    policy = tool.needs_approval
    if policy is None or isinstance(policy, bool):
        return bool(policy)

    _require_context(tool, context, "needs_approval")
    try:
        tool_input = parse_tool_input(tool_call.input)
        jsonschema.validate(instance=tool_input, schema=tool.input_schema)
    except (ValueError, jsonschema.ValidationError) as e:
        # dispatch reports the bad input back to the model as an error output
        logger.warning(f"Invalid input for tool {tool.name}, approval policy skipped: {getattr(e, 'message', e)}")
        return False

    options = ToolCallOptions(tool_call_id=tool_call.tool_call_id, messages=tuple(messages))
    try:
        if tool.binding == "context":
            result = policy(context, tool_input, options)
        else:
            result = policy(tool_input, options)
        return bool(await _maybe_await(result))
    except Exception as e:
        raise ConfigurationError(f"Approval policy of tool {tool.name!r} failed: {get_error_message(e)}") from e


async def dispatch(
    tool_set: ToolSet,
    context: ToolContext | None,
    tool_call: ToolCallPart,
    *,
    error_mode: ToolErrorMode = "text",
    messages: Sequence[MessageDoc] = (),
) -> ToolOutcome | None:
    """
    Execute one tool call. Returns None for output-only tools (no execute), which leaves the call
    for the client to answer. Failures never raise: they become error outputs.
    ConfigurationError (unbound context) is the only exception that propagates.
    """
    name = tool_call.tool_name
    tool = tool_set.get(name)

    async def _error(err: Any) -> ToolOutcome:
        output = await create_tool_model_output(tool, context, tool_call, err, error_mode=error_mode)
        return ToolOutcome(tool_call.tool_call_id, name, output, is_error=True, raw=err)

    if tool is None:
        return await _error(f"Unknown tool: {name}")
    if tool.execute is None:
        return None
    _require_context(tool, context, "execute")

    try:
        tool_input = parse_tool_input(tool_call.input)
        jsonschema.validate(instance=tool_input, schema=tool.input_schema)
    except ValueError as e:
        return await _error(e)
    except jsonschema.ValidationError as e:
        return await _error(f"Invalid input for tool {name}: {e.message}")

    options = ToolCallOptions(tool_call_id=tool_call.tool_call_id, messages=tuple(messages))
    try:
        if tool.binding == "context":
            raw = await _maybe_await(tool.execute(context, tool_input, options))
        else:
            raw = await _maybe_await(tool.execute(tool_input, options))
    except Exception as e:
        logger.exception(f"Tool {name} failed")
        return await _error(e)

    output = await create_tool_model_output(tool, context, tool_call, raw)
    return ToolOutcome(tool_call.tool_call_id, name, output, raw=raw)


async def dispatch_all(
    tool_set: ToolSet,
    context: ToolContext | None,
    tool_calls: Sequence[ToolCallPart],
    *,
    error_mode: ToolErrorMode = "text",
    messages: Sequence[MessageDoc] = (),
) -> list[ToolOutcome | None]:
    """Dispatch independent calls concurrently; results line up with tool_calls by position."""
    return list(await asyncio.gather(*(
        dispatch(tool_set, context, tc, error_mode=error_mode, messages=messages)
        for tc in tool_calls
    )))


def tool_definitions(tool_set: ToolSet) -> list[dict[str, Any]]:
    """OpenAI function-calling format: [{"type": "function", "function": {name, description, parameters}}]."""
    return [
        {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.input_schema,
            },
        }
        for tool in tool_set.values()
    ]


def approval_policy_kind(tool: ToolDefinition) -> str:
    """'always', 'never' or 'conditional'; used for tool metadata listings."""
    if callable(tool.needs_approval):
        return "conditional"
    return "always" if tool.needs_approval else "never"
