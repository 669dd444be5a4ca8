"""
Model provider interface used by the step engine.
A provider turns (messages, tool definitions) into one assistant turn, either whole
(generate) or as a stream of deltas (stream).
"""
from __future__ import annotations

from typing import Any, AsyncIterator, Literal, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from ..agent.messages import Message, ToolCallPart, Usage

FinishReason = str


class ModelResponse(BaseModel):
    text: str = ""
    reasoning: str | None = None
    tool_calls: list[ToolCallPart] = Field(default_factory=list)
    finish_reason: FinishReason = "stop"
    usage: Usage | None = None
    model_id: str | None = None
    provider: str | None = None


class ModelDelta(BaseModel):
    """One streamed fragment of a model turn."""

    type: Literal["text-delta", "reasoning-delta", "tool-input-delta", "tool-call", "finish"]
    text: str = ""
    tool_call_id: str | None = None
    tool_name: str | None = None
    tool_call: ToolCallPart | None = None
    finish_reason: FinishReason | None = None
    usage: Usage | None = None
    model_id: str | None = None


@runtime_checkable
class LanguageModel(Protocol):
    model_id: str

    async def generate(self, messages: list[Message], tools: list[dict[str, Any]]) -> ModelResponse: ...

    def stream(self, messages: list[Message], tools: list[dict[str, Any]]) -> AsyncIterator[ModelDelta]: ...


class ResponseBuilder:
    """Accumulates stream deltas into the ModelResponse the stream represents."""

    def __init__(self, model_id: str | None = None):
        self._text: list[str] = []
        self._reasoning: list[str] = []
        self._tool_calls: list[ToolCallPart] = []
        self._finish_reason: FinishReason = "stop"
        self._usage: Usage | None = None
        self._model_id = model_id

    def add(self, delta: ModelDelta) -> None:
        if delta.type == "text-delta":
            self._text.append(delta.text)
        elif delta.type == "reasoning-delta":
            self._reasoning.append(delta.text)
        elif delta.type == "tool-call" and delta.tool_call is not None:
            self._tool_calls.append(delta.tool_call)
        elif delta.type == "finish":
            self._finish_reason = delta.finish_reason or self._finish_reason
            self._usage = delta.usage
            self._model_id = delta.model_id or self._model_id

    def build(self) -> ModelResponse:
        return ModelResponse(
            text="".join(self._text),
            reasoning="".join(self._reasoning) or None,
            tool_calls=list(self._tool_calls),
            finish_reason=self._finish_reason,
            usage=self._usage,
            model_id=self._model_id,
        )
