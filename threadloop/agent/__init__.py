# Agent core: messages and threads, tool registry, approval state machine, step engine.
# messages is imported first; llm and usage depend on it.

from .messages import (
    Message,
    MessageDoc,
    MessagePage,
    PendingApproval,
    Thread,
    TextPart,
    ReasoningPart,
    ToolCallPart,
    ToolResultPart,
    ToolApprovalRequestPart,
    ToolApprovalResponsePart,
    TextOutput,
    JsonOutput,
    ErrorTextOutput,
    ErrorJsonOutput,
    ExecutionDeniedOutput,
    Usage,
)
from .threads import MessageStore, InMemoryMessageStore, MongoMessageStore, get_store, list_all_messages
from .tool_registry import (
    ToolContext,
    ToolCallOptions,
    ToolDefinition,
    ToolOutcome,
    ToolSet,
    create_tool,
    plain_tool,
    register,
    dispatch,
    needs_approval,
    create_tool_model_output,
    tool_definitions,
)
from .validation import Finding, validate_tool_definitions, validate_agent
from .approvals import (
    ApprovalState,
    ResolvedApproval,
    approval_states,
    pending_approvals,
    list_pending_approvals,
    open_turn_approvals,
    list_open_turn_approvals,
    resolve_approval,
    approve_tool_call,
    deny_tool_call,
)
from .context import filter_out_orphaned_tool_messages, fetch_context_messages
from .streaming import DeltaChunker, StreamChunk, StreamingOptions
from .config import Agent
from .agent_loop import (
    StepRecord,
    StepResult,
    generate_text,
    run_step,
    send_message,
    stream_text,
    consume_stream,
    step_count_is,
    has_tool_call,
)
from .scratchpad import Scratchpad, InMemoryScratchpad, MongoScratchpad, get_scratchpad
from .agents import build_approval_agent, build_research_agent, build_subagent
from . import tools

__all__ = [
    "Message",
    "MessageDoc",
    "MessagePage",
    "PendingApproval",
    "Thread",
    "TextPart",
    "ReasoningPart",
    "ToolCallPart",
    "ToolResultPart",
    "ToolApprovalRequestPart",
    "ToolApprovalResponsePart",
    "TextOutput",
    "JsonOutput",
    "ErrorTextOutput",
    "ErrorJsonOutput",
    "ExecutionDeniedOutput",
    "Usage",
    "MessageStore",
    "InMemoryMessageStore",
    "MongoMessageStore",
    "get_store",
    "list_all_messages",
    "ToolContext",
    "ToolCallOptions",
    "ToolDefinition",
    "ToolOutcome",
    "ToolSet",
    "create_tool",
    "plain_tool",
    "register",
    "dispatch",
    "needs_approval",
    "create_tool_model_output",
    "tool_definitions",
    "Finding",
    "validate_tool_definitions",
    "validate_agent",
    "ApprovalState",
    "ResolvedApproval",
    "approval_states",
    "pending_approvals",
    "list_pending_approvals",
    "open_turn_approvals",
    "list_open_turn_approvals",
    "resolve_approval",
    "approve_tool_call",
    "deny_tool_call",
    "filter_out_orphaned_tool_messages",
    "fetch_context_messages",
    "DeltaChunker",
    "StreamChunk",
    "StreamingOptions",
    "Agent",
    "StepRecord",
    "StepResult",
    "generate_text",
    "run_step",
    "send_message",
    "stream_text",
    "consume_stream",
    "step_count_is",
    "has_tool_call",
    "Scratchpad",
    "InMemoryScratchpad",
    "MongoScratchpad",
    "get_scratchpad",
    "build_approval_agent",
    "build_research_agent",
    "build_subagent",
    "tools",
]
