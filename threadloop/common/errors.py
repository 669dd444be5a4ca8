"""
Exceptions raised by the agent core.
Tool execution failures are NOT represented here: they are captured into
error outputs on the thread and never propagate out of a turn.
"""


class ThreadloopError(Exception):
    """Base class for all threadloop errors."""


class ConfigurationError(ThreadloopError):
    """Invalid tool set or agent configuration, or a context-bound policy called without a context."""


class NotFoundError(ThreadloopError):
    """Unknown thread or message, or an approval id that is unknown or already resolved."""


class ModelProviderError(ThreadloopError):
    """
    The model provider failed. Propagated unchanged through the step engine and
    the workflow loop; retrying is the caller's decision.
    """

    def __init__(self, message: str, *, retryable: bool = False, model: str | None = None):
        super().__init__(message)
        self.retryable = retryable
        self.model = model
