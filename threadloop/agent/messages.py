"""
Message and content-part models for agent threads.
A thread is an append-only list of MessageDoc rows ordered by (order, step_order).
"""
from __future__ import annotations

from datetime import datetime, UTC
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field

Role = Literal["user", "assistant", "tool", "system"]
MessageStatus = Literal["pending", "success", "failed"]


# --- Tool outputs -----------------------------------------------------------


class TextOutput(BaseModel):
    type: Literal["text"] = "text"
    value: str


class JsonOutput(BaseModel):
    type: Literal["json"] = "json"
    value: Any = None


class ErrorTextOutput(BaseModel):
    type: Literal["error-text"] = "error-text"
    value: str


class ErrorJsonOutput(BaseModel):
    type: Literal["error-json"] = "error-json"
    value: Any = None


class ExecutionDeniedOutput(BaseModel):
    type: Literal["execution-denied"] = "execution-denied"
    reason: str | None = None


ToolOutput = Annotated[
    Union[TextOutput, JsonOutput, ErrorTextOutput, ErrorJsonOutput, ExecutionDeniedOutput],
    Field(discriminator="type"),
]

ERROR_OUTPUT_TYPES = frozenset({"error-text", "error-json"})


# --- Content parts ----------------------------------------------------------


class TextPart(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ReasoningPart(BaseModel):
    type: Literal["reasoning"] = "reasoning"
    text: str


class ToolCallPart(BaseModel):
    type: Literal["tool-call"] = "tool-call"
    tool_call_id: str
    tool_name: str
    input: Any = None


class ToolResultPart(BaseModel):
    type: Literal["tool-result"] = "tool-result"
    tool_call_id: str
    tool_name: str
    output: ToolOutput
    is_error: bool = False

    @property
    def denied(self) -> bool:
        return self.output.type == "execution-denied"


class ToolApprovalRequestPart(BaseModel):
    type: Literal["tool-approval-request"] = "tool-approval-request"
    approval_id: str
    tool_call_id: str
    tool_name: str
    input: Any = None


class ToolApprovalResponsePart(BaseModel):
    type: Literal["tool-approval-response"] = "tool-approval-response"
    approval_id: str
    approved: bool
    reason: str | None = None


ContentPart = Annotated[
    Union[
        TextPart,
        ReasoningPart,
        ToolCallPart,
        ToolResultPart,
        ToolApprovalRequestPart,
        ToolApprovalResponsePart,
    ],
    Field(discriminator="type"),
]


# --- Messages ---------------------------------------------------------------


class Message(BaseModel):
    role: Role
    content: list[ContentPart] = Field(default_factory=list)

    @classmethod
    def user(cls, text: str) -> "Message":
        return cls(role="user", content=[TextPart(text=text)])

    @classmethod
    def system(cls, text: str) -> "Message":
        return cls(role="system", content=[TextPart(text=text)])

    def parts_of(self, part_type: type) -> list:
        return [p for p in self.content if isinstance(p, part_type)]


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    reasoning_tokens: int | None = None
    cached_input_tokens: int | None = None
    total_tokens: int = 0


class MessageDoc(BaseModel):
    """A persisted message. (order, step_order) is assigned by the store at append time."""

    id: str
    thread_id: str
    order: int
    step_order: int
    message: Message
    status: MessageStatus = "success"
    user_id: str | None = None
    agent_name: str | None = None
    model: str | None = None
    finish_reason: str | None = None
    usage: Usage | None = None
    text: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def key(self) -> tuple[int, int]:
        return (self.order, self.step_order)


class Thread(BaseModel):
    id: str
    user_id: str | None = None
    title: str = "New chat"
    status: Literal["active", "archived"] = "active"
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class MessagePage(BaseModel):
    page: list[MessageDoc]
    is_done: bool
    continue_cursor: str | None = None


class PendingApproval(BaseModel):
    """Projection over an approval-request part that has no matching approval-response yet."""

    approval_id: str
    thread_id: str
    tool_call_id: str
    tool_name: str
    input: Any = None
    message_id: str


# --- Helpers ----------------------------------------------------------------


def extract_text(message: Message) -> str | None:
    """Plain text of a user/assistant/system message; tool messages have none."""
    if message.role == "tool":
        return None
    texts = [p.text for p in message.content if isinstance(p, TextPart) and p.text]
    return " ".join(texts) if texts else None


def extract_reasoning(message: Message) -> str | None:
    texts = [p.text for p in message.content if isinstance(p, ReasoningPart) and p.text]
    return " ".join(texts) if texts else None


def is_tool_message(message: Message) -> bool:
    return message.role == "tool" or (
        message.role == "assistant" and any(isinstance(p, ToolCallPart) for p in message.content)
    )
