"""
Ready-made agents: the approval demo agent, the delegating research agent and its sub-agent.
"""
from __future__ import annotations

from typing import Any

from .config import Agent
from .threads import MessageStore
from .tools import (
    CHECK_BALANCE,
    DELETE_FILE,
    DELEGATE_TO_SUBAGENT,
    INTERNET_SEARCH,
    READ_SCRATCHPAD,
    TRANSFER_MONEY,
    UPDATE_SCRATCHPAD,
)

APPROVAL_AGENT_INSTRUCTIONS = """You are a helpful assistant that can manage files and money transfers.

You have access to these tools:
- delete_file: Delete a file (requires user approval)
- transfer_money: Transfer money (requires approval for amounts over $100)
- check_balance: Check account balance (no approval needed)

Use tools when the user asks you to perform an action. For general questions or conversation, just respond normally without calling tools.

This is a demo application - all operations are simulated and safe."""

RESEARCH_AGENT_INSTRUCTIONS = """You are a research agent.
1. Use the scratchpad to track your progress and findings.
2. Conduct research using internet_search.
3. Delegate complex or long sub-tasks using delegate_to_subagent (can use multiple in parallel).
4. Results from sub-agents will be provided to you via the subagent_completion tool.
5. When done, write your final report to the scratchpad and stop."""

SUBAGENT_INSTRUCTIONS = """You are a research sub-agent working on one delegated task.
Research it with internet_search and answer with a concise, self-contained summary of your findings."""


def build_approval_agent(model, store: MessageStore | None = None, deps: Any = None) -> Agent:
    return Agent(
        name="Approval Demo Agent",
        model=model,
        instructions=APPROVAL_AGENT_INSTRUCTIONS,
        tools=[DELETE_FILE, TRANSFER_MONEY, CHECK_BALANCE],
        store=store,
        max_steps=5,
        deps=deps,
    )


def build_research_agent(model, store: MessageStore | None = None, deps: Any = None) -> Agent:
    """Deep research agent; run it one step at a time with run_workflow."""
    return Agent(
        name="Deep Agent",
        model=model,
        instructions=RESEARCH_AGENT_INSTRUCTIONS,
        tools=[INTERNET_SEARCH, UPDATE_SCRATCHPAD, READ_SCRATCHPAD, DELEGATE_TO_SUBAGENT],
        store=store,
        deps=deps,
        delegation=True,
    )


def build_subagent(model, store: MessageStore | None = None) -> Agent:
    return Agent(
        name="Research Sub-agent",
        model=model,
        instructions=SUBAGENT_INSTRUCTIONS,
        tools=[INTERNET_SEARCH],
        store=store,
    )
