"""
Agent configuration: model, tools, store and loop limits. An Agent is immutable in practice;
tools are validated once, when the Agent is built.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Callable, Iterable, Mapping

from ..common.errors import ConfigurationError
from ..common.settings import get_settings
from .threads import MessageStore, get_store
from .tool_registry import ToolDefinition, ToolErrorMode, ToolSet
from .tools.research_tools import SUBAGENT_COMPLETION
from .validation import Finding, errors_only, format_findings, validate_agent

if TYPE_CHECKING:
    from ..llm.model import LanguageModel
    from ..usage import UsageHandler

logger = logging.getLogger(__name__)


@dataclass
class Agent:
    name: str
    model: "LanguageModel"
    instructions: str | None = None
    tools: ToolSet | Iterable[ToolDefinition] = ()
    store: MessageStore | None = None
    stop_when: list[Callable[[list[Any]], bool]] = field(default_factory=list)
    max_steps: int | None = None
    tool_error_mode: ToolErrorMode | None = None
    recent_messages: int | None = None
    usage_handler: "UsageHandler | None" = None
    deps: Any = None
    delegation: bool = False
    findings: list[Finding] = field(default_factory=list, init=False)

    def __post_init__(self) -> None:
        settings = get_settings()
        if self.store is None:
            self.store = get_store()
        if self.max_steps is None:
            self.max_steps = settings.max_steps
        if self.tool_error_mode is None:
            self.tool_error_mode = settings.tool_error_mode
        if self.recent_messages is None:
            self.recent_messages = settings.recent_messages

        definitions = list(self.tools.values()) if isinstance(self.tools, Mapping) else list(self.tools)
        self.tools = definitions
        self.findings = validate_agent(self)
        errors = errors_only(self.findings)
        if errors:
            raise ConfigurationError(f"Agent {self.name!r}: {format_findings(errors)}")
        for f in self.findings:
            logger.warning(f"Agent {self.name!r}: [{f.code}] {f.message}")

        if self.delegation:
            definitions = definitions + [SUBAGENT_COMPLETION]
        self.tools = MappingProxyType({d.name: d for d in definitions})
