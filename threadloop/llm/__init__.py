# Model providers: the LanguageModel interface, the litellm-backed model, and a scripted model for tests.

from .llm import agent_completion, get_temperature, is_retryable_error
from .model import LanguageModel, ModelDelta, ModelResponse, ResponseBuilder
from .litellm_model import LiteLLMModel, to_openai_messages
from .mock_model import ScriptedModel, text_turn, tool_call, tool_turn

__all__ = [
    "agent_completion",
    "get_temperature",
    "is_retryable_error",
    "LanguageModel",
    "ModelDelta",
    "ModelResponse",
    "ResponseBuilder",
    "LiteLLMModel",
    "to_openai_messages",
    "ScriptedModel",
    "text_turn",
    "tool_call",
    "tool_turn",
]
