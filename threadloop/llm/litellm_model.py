"""
LanguageModel backed by litellm (OpenAI chat-completions format).
Thread messages are converted to provider messages here; approval parts never reach the provider.
"""
from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator

from ..common.errors import ModelProviderError
from ..agent.messages import (
    ExecutionDeniedOutput,
    Message,
    TextPart,
    ToolCallPart,
    ToolOutput,
    ToolResultPart,
    Usage,
)
from .llm import agent_completion, is_retryable_error
from .model import ModelDelta, ModelResponse

logger = logging.getLogger(__name__)

DENIED_MESSAGE = "User denied this action."

FINISH_REASONS = {
    "tool_calls": "tool-calls",
    "function_call": "tool-calls",
    "content_filter": "content-filter",
}


def render_tool_output(output: ToolOutput) -> str:
    """Tool message content for the provider."""
    if output.type == "text":
        return output.value
    if output.type == "json":
        return json.dumps(output.value)
    if output.type == "error-text":
        return json.dumps({"error": output.value})
    if output.type == "error-json":
        return json.dumps(output.value)
    if isinstance(output, ExecutionDeniedOutput):
        payload = {"error": DENIED_MESSAGE}
        if output.reason:
            payload["reason"] = output.reason
        return json.dumps(payload)
    raise ValueError(f"Unsupported tool output type: {output.type}")


def _tool_call_to_openai(part: ToolCallPart) -> dict:
    arguments = part.input if isinstance(part.input, str) else json.dumps(part.input or {})
    return {
        "id": part.tool_call_id,
        "type": "function",
        "function": {"name": part.tool_name, "arguments": arguments},
    }


def _message_to_openai(message: Message) -> list[dict]:
    text = "".join(p.text for p in message.content if isinstance(p, TextPart))
    if message.role in ("system", "user"):
        return [{"role": message.role, "content": text}]
    if message.role == "assistant":
        tool_calls = [_tool_call_to_openai(p) for p in message.content if isinstance(p, ToolCallPart)]
        out: dict[str, Any] = {"role": "assistant", "content": text or None}
        if tool_calls:
            out["tool_calls"] = tool_calls
        return [out]
    return [
        {"role": "tool", "tool_call_id": p.tool_call_id, "content": render_tool_output(p.output)}
        for p in message.content
        if isinstance(p, ToolResultPart)
    ]


def _tool_call_ids(msg: dict) -> list[str]:
    """Extract tool call ids from an assistant message."""
    return [tc.get("id", "") for tc in msg.get("tool_calls") or [] if tc]


def _sanitize_messages_for_llm(messages: list[dict]) -> list[dict]:
    """
    Ensure every assistant message with tool_calls is immediately followed by
    tool_result (role "tool") messages covering all of its calls. If not (e.g. an
    approval still outstanding), drop tool_calls from that assistant message so the
    API receives a valid sequence.
    """
    out: list[dict] = []
    i = 0
    while i < len(messages):
        m = messages[i]
        role = m.get("role")
        if role != "assistant" or not m.get("tool_calls"):
            if role == "tool" and (not out or out[-1].get("role") not in ("assistant", "tool")):
                # Result without a preceding call block
                i += 1
                continue
            if role == "assistant":
                out.append({"role": "assistant", "content": m.get("content") or ""})
            else:
                out.append(m)
            i += 1
            continue
        want_ids = set(_tool_call_ids(m))
        got_ids: set[str] = set()
        j = i + 1
        while j < len(messages) and messages[j].get("role") == "tool":
            got_ids.add(messages[j].get("tool_call_id") or "")
            j += 1
        if got_ids >= want_ids:
            out.append(m)
            i += 1
            while i < len(messages) and messages[i].get("role") == "tool":
                if messages[i].get("tool_call_id") in want_ids:
                    out.append(messages[i])
                i += 1
        else:
            out.append({"role": "assistant", "content": m.get("content") or ""})
            i = j
    return out


def to_openai_messages(messages: list[Message]) -> list[dict]:
    converted: list[dict] = []
    for message in messages:
        converted.extend(_message_to_openai(message))
    return _sanitize_messages_for_llm(converted)


def _usage_from_litellm(usage: Any) -> Usage | None:
    if usage is None:
        return None
    prompt_tokens = getattr(usage, "prompt_tokens", None) or 0
    completion_tokens = getattr(usage, "completion_tokens", None) or 0
    completion_details = getattr(usage, "completion_tokens_details", None)
    prompt_details = getattr(usage, "prompt_tokens_details", None)
    return Usage(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=getattr(usage, "total_tokens", None) or (prompt_tokens + completion_tokens),
        reasoning_tokens=getattr(completion_details, "reasoning_tokens", None),
        cached_input_tokens=getattr(prompt_details, "cached_tokens", None),
    )


def _parse_arguments(arguments: str | None) -> Any:
    if not arguments:
        return {}
    try:
        return json.loads(arguments)
    except json.JSONDecodeError:
        # Left as a string; dispatch reports the invalid JSON to the model
        return arguments


def _finish_reason(reason: str | None) -> str:
    if not reason:
        return "stop"
    return FINISH_REASONS.get(reason, reason)


class LiteLLMModel:
    def __init__(self, model_id: str, api_key: str | None = None, temperature: float | None = None):
        self.model_id = model_id
        self.api_key = api_key
        self.temperature = temperature

    async def _open(self, messages: list[Message], tools: list[dict[str, Any]], stream: bool):
        try:
            return await agent_completion(
                model=self.model_id,
                messages=to_openai_messages(messages),
                api_key=self.api_key,
                tools=tools or None,
                temperature=self.temperature,
                stream=stream,
            )
        except Exception as e:
            logger.error(f"LLM call failed for model {self.model_id}: {e}")
            raise ModelProviderError(str(e), retryable=is_retryable_error(e), model=self.model_id) from e

    async def generate(self, messages: list[Message], tools: list[dict[str, Any]]) -> ModelResponse:
        response = await self._open(messages, tools, stream=False)
        choice = response.choices[0]
        message = choice.message
        tool_calls = [
            ToolCallPart(
                tool_call_id=tc.id,
                tool_name=tc.function.name,
                input=_parse_arguments(tc.function.arguments),
            )
            for tc in getattr(message, "tool_calls", None) or []
        ]
        return ModelResponse(
            text=(message.content or "").strip(),
            reasoning=getattr(message, "reasoning_content", None),
            tool_calls=tool_calls,
            finish_reason=_finish_reason(getattr(choice, "finish_reason", None)),
            usage=_usage_from_litellm(getattr(response, "usage", None)),
            model_id=getattr(response, "model", None) or self.model_id,
        )

    async def stream(self, messages: list[Message], tools: list[dict[str, Any]]) -> AsyncIterator[ModelDelta]:
        response = await self._open(messages, tools, stream=True)
        pending: dict[int, dict] = {}
        finish_reason = None
        usage = None
        try:
            async for chunk in response:
                if getattr(chunk, "usage", None):
                    usage = _usage_from_litellm(chunk.usage)
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                delta = choice.delta
                if getattr(delta, "reasoning_content", None):
                    yield ModelDelta(type="reasoning-delta", text=delta.reasoning_content)
                if delta.content:
                    yield ModelDelta(type="text-delta", text=delta.content)
                for tc in getattr(delta, "tool_calls", None) or []:
                    entry = pending.setdefault(tc.index, {"id": None, "name": None, "arguments": ""})
                    if tc.id:
                        entry["id"] = tc.id
                    if tc.function and tc.function.name:
                        entry["name"] = tc.function.name
                    if tc.function and tc.function.arguments:
                        entry["arguments"] += tc.function.arguments
                        yield ModelDelta(
                            type="tool-input-delta",
                            text=tc.function.arguments,
                            tool_call_id=entry["id"],
                            tool_name=entry["name"],
                        )
                if choice.finish_reason:
                    finish_reason = choice.finish_reason
        except Exception as e:
            logger.error(f"LLM stream failed for model {self.model_id}: {e}")
            raise ModelProviderError(str(e), retryable=is_retryable_error(e), model=self.model_id) from e

        for index in sorted(pending):
            entry = pending[index]
            yield ModelDelta(
                type="tool-call",
                tool_call=ToolCallPart(
                    tool_call_id=entry["id"] or f"call_{index}",
                    tool_name=entry["name"] or "",
                    input=_parse_arguments(entry["arguments"]),
                ),
            )
        yield ModelDelta(
            type="finish",
            finish_reason=_finish_reason(finish_reason),
            usage=usage,
            model_id=self.model_id,
        )
