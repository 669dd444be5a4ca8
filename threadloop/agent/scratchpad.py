"""
Per-thread scratchpad: free-form working notes an agent rewrites as it goes.
The research workflow reads it as its accumulated result.
"""
from __future__ import annotations

from datetime import datetime, UTC
from typing import Protocol

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from ..common.errors import ConfigurationError
from ..common.settings import get_settings

SCRATCHPADS_COLLECTION = "agent_scratchpads"


class Scratchpad(Protocol):
    async def get(self, thread_id: str) -> str | None: ...

    async def set(self, thread_id: str, content: str) -> None: ...


class InMemoryScratchpad:
    def __init__(self) -> None:
        self._content: dict[str, str] = {}

    async def get(self, thread_id: str) -> str | None:
        return self._content.get(thread_id)

    async def set(self, thread_id: str, content: str) -> None:
        self._content[thread_id] = content


class MongoScratchpad:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db[SCRATCHPADS_COLLECTION]

    async def get(self, thread_id: str) -> str | None:
        doc = await self.collection.find_one({"thread_id": thread_id})
        return doc.get("content") if doc else None

    async def set(self, thread_id: str, content: str) -> None:
        await self.collection.update_one(
            {"thread_id": thread_id},
            {"$set": {"content": content, "updated_at": datetime.now(UTC)}},
            upsert=True,
        )


_scratchpad: Scratchpad | None = None


def get_scratchpad() -> Scratchpad:
    """Get or create the scratchpad for the configured store backend."""
    global _scratchpad
    if _scratchpad is not None:
        return _scratchpad

    settings = get_settings()
    if settings.store_backend == "memory":
        _scratchpad = InMemoryScratchpad()
    elif settings.store_backend == "mongodb":
        _scratchpad = MongoScratchpad(AsyncIOMotorClient(settings.mongodb_uri)[settings.env])
    else:
        raise ConfigurationError(
            f"Unsupported message store backend: {settings.store_backend}. Use 'memory' or 'mongodb'."
        )
    return _scratchpad
