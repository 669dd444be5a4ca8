# Usage side channel: per-turn token records handed to a caller-supplied handler.

from .usage import (
    UsageRecord,
    UsageHandler,
    usage_record_from,
    record_usage,
    schedule_usage,
    flush_usage,
    set_record_usage_hook,
    add_usage,
)

__all__ = [
    "UsageRecord",
    "UsageHandler",
    "usage_record_from",
    "record_usage",
    "schedule_usage",
    "flush_usage",
    "set_record_usage_hook",
    "add_usage",
]
