# dependencies.py: FastAPI dependencies for the agent routes. Tests override these.

from functools import lru_cache

import threadloop as tl


def get_store() -> tl.agent.MessageStore:
    return tl.agent.get_store()


@lru_cache(maxsize=1)
def _default_model() -> tl.llm.LiteLLMModel:
    return tl.llm.LiteLLMModel(tl.common.get_settings().model)


@lru_cache(maxsize=1)
def get_agent() -> tl.agent.Agent:
    return tl.agent.build_approval_agent(_default_model(), store=get_store())


@lru_cache(maxsize=1)
def get_workflow_agent() -> tl.agent.Agent:
    return tl.agent.build_research_agent(_default_model(), store=get_store())


@lru_cache(maxsize=1)
def get_subtask_runner() -> tl.workflow.SubtaskRunner:
    return tl.workflow.make_subagent_runner(tl.agent.build_subagent(_default_model(), store=get_store()))


def get_run_registry() -> tl.workflow.RunRegistry:
    return tl.workflow.get_run_registry()
