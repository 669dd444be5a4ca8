# Shared helpers: ids, errors, settings, environment setup.

from .id import create_id, is_valid_object_id
from .errors import (
    ThreadloopError,
    ConfigurationError,
    NotFoundError,
    ModelProviderError,
)
from .settings import Settings, get_settings
from .setup import setup

__all__ = [
    "create_id",
    "is_valid_object_id",
    "ThreadloopError",
    "ConfigurationError",
    "NotFoundError",
    "ModelProviderError",
    "Settings",
    "get_settings",
    "setup",
]
