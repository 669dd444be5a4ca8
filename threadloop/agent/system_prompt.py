"""
Builds the system message for a model turn from the agent's instructions.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

from .messages import Message

if TYPE_CHECKING:
    from .config import Agent

APPROVAL_NOTE = (
    "Some of your tools require user approval ({names}). When you call one, stop immediately "
    "after the call. Do not assume it will succeed; wait for the tool result before confirming anything."
)


def approval_tool_names(agent: "Agent") -> list[str]:
    return [t.name for t in agent.tools.values() if t.needs_approval is not False]


def build_system_message(agent: "Agent") -> Message | None:
    """None when the agent has nothing to say up front."""
    sections = []
    if agent.instructions and agent.instructions.strip():
        sections.append(agent.instructions.strip())
    names = approval_tool_names(agent)
    if names:
        sections.append(APPROVAL_NOTE.format(names=", ".join(names)))
    if not sections:
        return None
    return Message.system("\n\n".join(sections))
