import logging
from typing import Optional, Dict, Any, Union, List

import litellm
import stamina

logger = logging.getLogger(__name__)


def is_o_series_model(model_name: str) -> bool:
    """Return True for OpenAI O-series models (e.g., o1, o1-mini, o3, o4-mini)."""
    if not model_name:
        return False
    name = model_name.strip().lower()
    # O-series models start with 'o' (not to be confused with gpt-4o which starts with 'gpt')
    return name.startswith("o") and not name.startswith("gpt")


def get_temperature(model: str) -> float:
    """
    Get the temperature setting for a given model.

    Args:
        model: The model name

    Returns:
        float: Temperature value (1.0 for o-series models or gemini models, 0.0 otherwise)
    """
    if not model:
        return 0.0

    if is_o_series_model(model):
        return 1.0
    if model.strip().lower().startswith("gemini/"):
        return 1.0

    # Tool calling is most reliable at temperature 0
    return 0.0


RETRYABLE_PATTERNS = [
    "503",
    "model is overloaded",
    "unavailable",
    "rate limit",
    "timeout",
    "connection error",
    "internal server error",
    "service unavailable",
    "temporarily unavailable",
]


def is_retryable_error(exception) -> bool:
    """
    Check if an exception is retryable based on error patterns.

    Args:
        exception: The exception to check

    Returns:
        bool: True if the exception is retryable, False otherwise
    """
    if not isinstance(exception, Exception):
        return False

    error_message = str(exception).lower()
    return any(pattern in error_message for pattern in RETRYABLE_PATTERNS)


@stamina.retry(on=is_retryable_error)
async def _litellm_acompletion_with_retry(
    model: str,
    messages: list,
    api_key: Optional[str] = None,
    tools: Optional[List[Dict]] = None,
    tool_choice: Optional[Union[str, Dict]] = None,
    temperature: Optional[float] = None,
    stream: bool = False,
):
    """
    Make an LLM call with stamina retry mechanism.

    Args:
        model: The LLM model to use
        messages: The messages to send
        api_key: The API key; litellm falls back to the provider's environment variable
        tools: Optional list of tools/functions for the model to call
        tool_choice: Optional tool choice parameter ("auto", "none", or specific function)
        temperature: Overrides get_temperature(model)
        stream: Return an async stream of chunks instead of a full response

    Returns:
        The LLM response

    Raises:
        Exception: If the call fails after all retries
    """
    params: Dict[str, Any] = {
        "model": model,
        "messages": messages,
        "temperature": temperature if temperature is not None else get_temperature(model),
    }
    if api_key:
        params["api_key"] = api_key
    if tools:
        params["tools"] = tools
        params["tool_choice"] = tool_choice if tool_choice is not None else "auto"
    if stream:
        params["stream"] = True
        params["stream_options"] = {"include_usage": True}

    return await litellm.acompletion(**params)


async def agent_completion(
    model: str,
    messages: list,
    api_key: Optional[str] = None,
    tools: Optional[List[Dict]] = None,
    tool_choice: Optional[Union[str, Dict]] = None,
    temperature: Optional[float] = None,
    stream: bool = False,
):
    """
    Public wrapper for agent use. Makes one LLM completion call with optional tools.
    Only opening the request is retried; a stream that fails midway surfaces to the caller.
    """
    return await _litellm_acompletion_with_retry(
        model=model,
        messages=messages,
        api_key=api_key,
        tools=tools,
        tool_choice=tool_choice,
        temperature=temperature,
        stream=stream,
    )
