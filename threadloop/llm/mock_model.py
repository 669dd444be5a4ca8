"""
ScriptedModel: a LanguageModel that replays scripted turns. Used by tests and demos;
tool results still come from real tool execution.
"""
from __future__ import annotations

import json
from typing import Any, AsyncIterator, Callable, Iterable, Union

from ..common.errors import ModelProviderError
from ..common.id import create_prefixed_id
from ..agent.messages import Message, ToolCallPart, Usage
from .model import ModelDelta, ModelResponse

DEFAULT_USAGE = Usage(prompt_tokens=3, completion_tokens=10, total_tokens=13)

ScriptedTurn = Union[ModelResponse, Exception, Callable[[list[Message]], ModelResponse]]


def text_turn(text: str, *, reasoning: str | None = None, finish_reason: str = "stop") -> ModelResponse:
    return ModelResponse(text=text, reasoning=reasoning, finish_reason=finish_reason, usage=DEFAULT_USAGE)


def tool_call(tool_name: str, input: Any = None, tool_call_id: str | None = None) -> ToolCallPart:
    return ToolCallPart(
        tool_call_id=tool_call_id or create_prefixed_id("call"),
        tool_name=tool_name,
        input=input if input is not None else {},
    )


def tool_turn(*calls: ToolCallPart, text: str = "") -> ModelResponse:
    return ModelResponse(text=text, tool_calls=list(calls), finish_reason="tool-calls", usage=DEFAULT_USAGE)


class ScriptedModel:
    """
    Returns the scripted turns in order, one per generate/stream call.
    An Exception entry is raised instead; a callable entry is called with the messages.
    When the script runs out, `default` is returned, or ModelProviderError raised if unset.
    """

    def __init__(
        self,
        turns: Iterable[ScriptedTurn] = (),
        *,
        model_id: str = "scripted",
        default: ModelResponse | None = None,
        chunk_size: int = 3,
    ):
        self.model_id = model_id
        self.turns = list(turns)
        self.default = default
        self.chunk_size = chunk_size
        self.calls: list[list[Message]] = []
        self.tools_seen: list[list[dict[str, Any]]] = []

    def add(self, *turns: ScriptedTurn) -> "ScriptedModel":
        self.turns.extend(turns)
        return self

    async def generate(self, messages: list[Message], tools: list[dict[str, Any]]) -> ModelResponse:
        self.calls.append([m.model_copy(deep=True) for m in messages])
        self.tools_seen.append(list(tools))
        if not self.turns:
            if self.default is None:
                raise ModelProviderError("ScriptedModel has no turns left", model=self.model_id)
            return self.default.model_copy(deep=True)
        turn = self.turns.pop(0)
        if isinstance(turn, Exception):
            raise turn
        if callable(turn):
            turn = turn(messages)
        response = turn.model_copy(deep=True)
        response.model_id = response.model_id or self.model_id
        return response

    async def stream(self, messages: list[Message], tools: list[dict[str, Any]]) -> AsyncIterator[ModelDelta]:
        response = await self.generate(messages, tools)
        if response.reasoning:
            yield ModelDelta(type="reasoning-delta", text=response.reasoning)
        text = response.text
        for i in range(0, len(text), self.chunk_size):
            yield ModelDelta(type="text-delta", text=text[i:i + self.chunk_size])
        for call in response.tool_calls:
            arguments = call.input if isinstance(call.input, str) else json.dumps(call.input)
            yield ModelDelta(
                type="tool-input-delta",
                text=arguments,
                tool_call_id=call.tool_call_id,
                tool_name=call.tool_name,
            )
            yield ModelDelta(type="tool-call", tool_call=call)
        yield ModelDelta(
            type="finish",
            finish_reason=response.finish_reason,
            usage=response.usage,
            model_id=response.model_id,
        )
