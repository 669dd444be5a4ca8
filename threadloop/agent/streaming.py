"""
Stream chunk types and text-delta smoothing.

DeltaChunker regroups raw provider text deltas into char, word, line or regex-delimited
chunks and coalesces them so at most one chunk is released per throttle interval.
Everything pushed in comes back out: the concatenation of released chunks always equals
the concatenation of pushed deltas once flush() has been called.
"""
from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Literal

from pydantic import BaseModel

from ..common.settings import get_settings
from .messages import PendingApproval, ToolCallPart, ToolResultPart

ChunkingMode = Literal["char", "word", "line"]

CHUNKING_PATTERNS: dict[str, re.Pattern] = {
    "word": re.compile(r"\S+\s+"),
    "line": re.compile(r"\n+"),
}


class StreamChunk(BaseModel):
    type: Literal[
        "text-delta",
        "reasoning-delta",
        "tool-input-delta",
        "tool-call",
        "tool-result",
        "approval-request",
        "finish",
    ]
    text: str = ""
    tool_call_id: str | None = None
    tool_name: str | None = None
    tool_call: ToolCallPart | None = None
    tool_result: ToolResultPart | None = None
    approval: PendingApproval | None = None
    finish_reason: str | None = None
    step_number: int | None = None
    result: Any = None


class DeltaChunker:
    def __init__(
        self,
        chunking: ChunkingMode | str | re.Pattern = "word",
        throttle_ms: int = 0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if chunking == "char":
            self._pattern = None
        elif isinstance(chunking, re.Pattern):
            self._pattern = chunking
        elif chunking in CHUNKING_PATTERNS:
            self._pattern = CHUNKING_PATTERNS[chunking]
        else:
            self._pattern = re.compile(chunking)
        self.throttle_ms = throttle_ms
        self._clock = clock
        self._buffer = ""
        self._ready = ""
        self._last_release: float | None = None

    def _split(self) -> None:
        """Move every complete chunk from the buffer to the ready queue."""
        if self._pattern is None:
            self._ready += self._buffer
            self._buffer = ""
            return
        while True:
            match = self._pattern.search(self._buffer)
            if match is None or match.end() == 0:
                return
            self._ready += self._buffer[:match.end()]
            self._buffer = self._buffer[match.end():]

    def push(self, delta: str) -> list[str]:
        """Add a delta; returns the chunks that may be released now (possibly none)."""
        self._buffer += delta
        self._split()
        if not self._ready:
            return []
        now = self._clock()
        if (
            self.throttle_ms
            and self._last_release is not None
            and (now - self._last_release) * 1000 < self.throttle_ms
        ):
            return []
        self._last_release = now
        return self._release()

    def _release(self) -> list[str]:
        if self._pattern is None:
            chunks = list(self._ready)
        else:
            chunks = [self._ready]
        self._ready = ""
        return chunks

    def flush(self) -> list[str]:
        """Release everything held back, including an incomplete trailing chunk."""
        self._ready += self._buffer
        self._buffer = ""
        if not self._ready:
            return []
        return self._release()


@dataclass
class StreamingOptions:
    chunking: ChunkingMode | str | re.Pattern = "word"
    throttle_ms: int = 250
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)

    @classmethod
    def from_settings(cls) -> "StreamingOptions":
        settings = get_settings()
        return cls(chunking=settings.stream_chunking, throttle_ms=settings.stream_throttle_ms)

    def chunker(self) -> DeltaChunker:
        return DeltaChunker(self.chunking, self.throttle_ms, self.clock)
