"""
Persistence for agent threads.
Messages are append-only rows keyed by thread_id and ordered by (order, step_order).
Two backends: InMemoryMessageStore (tests, single process) and MongoMessageStore
(motor; collections agent_threads and agent_messages).
"""
from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, UTC
from typing import Any, Literal, Protocol

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from ..common.errors import ConfigurationError, NotFoundError
from ..common.id import create_id, is_valid_object_id
from ..common.settings import get_settings
from .approvals import find_pending_approval, open_turn_approvals
from .messages import (
    Message,
    MessageDoc,
    MessagePage,
    MessageStatus,
    PendingApproval,
    Thread,
    ToolApprovalRequestPart,
    ToolApprovalResponsePart,
    ToolResultPart,
    Usage,
    extract_text,
)

logger = logging.getLogger(__name__)

THREADS_COLLECTION = "agent_threads"
MESSAGES_COLLECTION = "agent_messages"

DEFAULT_PAGE_SIZE = 100


class MessageStore(Protocol):
    async def create_thread(self, user_id: str | None = None, title: str | None = None) -> str: ...

    async def get_thread(self, thread_id: str) -> Thread | None: ...

    async def list_threads(self, user_id: str | None, limit: int = 50) -> list[Thread]: ...

    async def update_thread_title(self, thread_id: str, title: str) -> bool: ...

    async def append_message(
        self,
        thread_id: str,
        message: Message,
        *,
        new_order: bool = False,
        status: MessageStatus = "success",
        user_id: str | None = None,
        agent_name: str | None = None,
        model: str | None = None,
        finish_reason: str | None = None,
        usage: Usage | None = None,
    ) -> MessageDoc: ...

    async def get_message(self, message_id: str) -> MessageDoc | None: ...

    async def list_messages(
        self,
        thread_id: str,
        *,
        cursor: str | None = None,
        num_items: int = DEFAULT_PAGE_SIZE,
        order: Literal["asc", "desc"] = "asc",
    ) -> MessagePage: ...

    async def append_tool_result(
        self,
        thread_id: str,
        message: Message,
        *,
        turn_message_id: str,
        user_id: str | None = None,
        agent_name: str | None = None,
    ) -> tuple[MessageDoc, bool]: ...

    async def find_unresolved_approval(self, thread_id: str, approval_id: str) -> PendingApproval | None: ...


async def list_all_messages(store: MessageStore, thread_id: str) -> list[MessageDoc]:
    """Read the whole thread, oldest first, following pagination cursors."""
    docs: list[MessageDoc] = []
    cursor: str | None = None
    while True:
        page = await store.list_messages(thread_id, cursor=cursor, num_items=DEFAULT_PAGE_SIZE)
        docs.extend(page.page)
        if page.is_done:
            return docs
        cursor = page.continue_cursor


def _approval_response_ids(message: Message) -> list[str]:
    return [p.approval_id for p in message.content if isinstance(p, ToolApprovalResponsePart)]


def _result_call_ids(message: Message) -> list[str]:
    return [p.tool_call_id for p in message.content if isinstance(p, ToolResultPart)]


def _next_key(last: tuple[int, int] | None, new_order: bool) -> tuple[int, int]:
    if last is None:
        return (0, 0)
    if new_order:
        return (last[0] + 1, 0)
    return (last[0], last[1] + 1)


class InMemoryMessageStore:
    """
    Process-local store. Appends are serialized per thread with an asyncio.Lock, which also
    makes the approval-response check-and-append atomic.
    """

    def __init__(self) -> None:
        self._threads: dict[str, Thread] = {}
        self._messages: dict[str, list[MessageDoc]] = {}
        self._by_id: dict[str, MessageDoc] = {}
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def create_thread(self, user_id: str | None = None, title: str | None = None) -> str:
        thread_id = create_id()
        self._threads[thread_id] = Thread(id=thread_id, user_id=user_id, title=title or "New chat")
        self._messages[thread_id] = []
        return thread_id

    async def get_thread(self, thread_id: str) -> Thread | None:
        thread = self._threads.get(thread_id)
        return thread.model_copy() if thread else None

    async def list_threads(self, user_id: str | None, limit: int = 50) -> list[Thread]:
        threads = [t for t in self._threads.values() if user_id is None or t.user_id == user_id]
        threads.sort(key=lambda t: t.updated_at, reverse=True)
        return [t.model_copy() for t in threads[:limit]]

    async def update_thread_title(self, thread_id: str, title: str) -> bool:
        thread = self._threads.get(thread_id)
        if thread is None:
            return False
        thread.title = title
        thread.updated_at = datetime.now(UTC)
        return True

    async def append_message(
        self,
        thread_id: str,
        message: Message,
        *,
        new_order: bool = False,
        status: MessageStatus = "success",
        user_id: str | None = None,
        agent_name: str | None = None,
        model: str | None = None,
        finish_reason: str | None = None,
        usage: Usage | None = None,
    ) -> MessageDoc:
        if thread_id not in self._threads:
            raise NotFoundError(f"Thread {thread_id} not found")
        async with self._locks[thread_id]:
            doc = self._append_locked(
                thread_id,
                message,
                new_order=new_order,
                status=status,
                user_id=user_id,
                agent_name=agent_name,
                model=model,
                finish_reason=finish_reason,
                usage=usage,
            )
        return doc.model_copy(deep=True)

    async def append_tool_result(
        self,
        thread_id: str,
        message: Message,
        *,
        turn_message_id: str,
        user_id: str | None = None,
        agent_name: str | None = None,
    ) -> tuple[MessageDoc, bool]:
        """
        Append a tool message answering calls of turn_message_id. The flag is True only for the
        append that leaves the turn without an open approval.
        """
        if thread_id not in self._threads:
            raise NotFoundError(f"Thread {thread_id} not found")
        async with self._locks[thread_id]:
            log = self._messages[thread_id]
            was_open = bool(open_turn_approvals(log, turn_message_id))
            doc = self._append_locked(thread_id, message, user_id=user_id, agent_name=agent_name)
            closed = was_open and not open_turn_approvals(log, turn_message_id)
        return doc.model_copy(deep=True), closed

    def _append_locked(self, thread_id: str, message: Message, *, new_order: bool = False, **fields: Any) -> MessageDoc:
        log = self._messages[thread_id]
        for approval_id in _approval_response_ids(message):
            if find_pending_approval(log, approval_id) is None:
                raise NotFoundError(f"Approval {approval_id} not found or already resolved")
        order, step_order = _next_key(log[-1].key if log else None, new_order)
        doc = MessageDoc(
            id=create_id(),
            thread_id=thread_id,
            order=order,
            step_order=step_order,
            message=message.model_copy(deep=True),
            text=extract_text(message),
            **fields,
        )
        log.append(doc)
        self._by_id[doc.id] = doc
        self._threads[thread_id].updated_at = doc.created_at
        return doc

    async def get_message(self, message_id: str) -> MessageDoc | None:
        doc = self._by_id.get(message_id)
        return doc.model_copy(deep=True) if doc else None

    async def list_messages(
        self,
        thread_id: str,
        *,
        cursor: str | None = None,
        num_items: int = DEFAULT_PAGE_SIZE,
        order: Literal["asc", "desc"] = "asc",
    ) -> MessagePage:
        if thread_id not in self._threads:
            raise NotFoundError(f"Thread {thread_id} not found")
        log = list(self._messages[thread_id])
        if order == "desc":
            log.reverse()
        start = int(cursor) if cursor else 0
        page = log[start:start + num_items]
        end = start + len(page)
        is_done = end >= len(log)
        return MessagePage(
            page=[d.model_copy(deep=True) for d in page],
            is_done=is_done,
            continue_cursor=None if is_done else str(end),
        )

    async def find_unresolved_approval(self, thread_id: str, approval_id: str) -> PendingApproval | None:
        if thread_id not in self._threads:
            return None
        return find_pending_approval(self._messages[thread_id], approval_id)


def _doc_from_mongo(raw: dict) -> MessageDoc:
    data = {k: v for k, v in raw.items() if k not in ("_id", "resolved_approval_ids", "answered_tool_call_ids")}
    data["id"] = str(raw["_id"])
    return MessageDoc.model_validate(data)


def _thread_from_mongo(raw: dict) -> Thread:
    return Thread(
        id=str(raw["_id"]),
        user_id=raw.get("user_id"),
        title=raw.get("title", "New chat"),
        status=raw.get("status", "active"),
        created_at=raw.get("created_at"),
        updated_at=raw.get("updated_at"),
    )


class MongoMessageStore:
    """
    MongoDB store. The thread document carries the last (order, step_order) and is bumped with
    find_one_and_update, so concurrent appenders never share a key. Approval responses are made
    at-most-once by a unique index on agent_messages.resolved_approval_ids.
    """

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.threads = db[THREADS_COLLECTION]
        self.messages = db[MESSAGES_COLLECTION]

    async def ensure_indexes(self) -> None:
        await self.messages.create_index([("thread_id", 1), ("order", 1), ("step_order", 1)])
        await self.messages.create_index("resolved_approval_ids", unique=True, sparse=True)
        await self.threads.create_index([("user_id", 1), ("updated_at", -1)])

    async def create_thread(self, user_id: str | None = None, title: str | None = None) -> str:
        now = datetime.now(UTC)
        result = await self.threads.insert_one({
            "user_id": user_id,
            "title": title or "New chat",
            "status": "active",
            "last_order": -1,
            "last_step_order": 0,
            "created_at": now,
            "updated_at": now,
        })
        return str(result.inserted_id)

    async def get_thread(self, thread_id: str) -> Thread | None:
        if not is_valid_object_id(thread_id):
            return None
        raw = await self.threads.find_one({"_id": ObjectId(thread_id)})
        return _thread_from_mongo(raw) if raw else None

    async def list_threads(self, user_id: str | None, limit: int = 50) -> list[Thread]:
        query: dict[str, Any] = {} if user_id is None else {"user_id": user_id}
        cursor = self.threads.find(query).sort("updated_at", -1).limit(limit)
        return [_thread_from_mongo(raw) for raw in await cursor.to_list(length=limit)]

    async def update_thread_title(self, thread_id: str, title: str) -> bool:
        if not is_valid_object_id(thread_id):
            return False
        result = await self.threads.update_one(
            {"_id": ObjectId(thread_id)},
            {"$set": {"title": title, "updated_at": datetime.now(UTC)}},
        )
        return result.modified_count > 0

    async def _reserve_key(self, thread_id: str, new_order: bool) -> tuple[int, int]:
        thread_filter = {"_id": ObjectId(thread_id)}
        current = await self.threads.find_one(thread_filter, projection={"last_order": 1})
        if current is None:
            raise NotFoundError(f"Thread {thread_id} not found")
        now = datetime.now(UTC)
        if new_order or current.get("last_order", -1) < 0:
            update = {"$inc": {"last_order": 1}, "$set": {"last_step_order": 0, "updated_at": now}}
        else:
            update = {"$inc": {"last_step_order": 1}, "$set": {"updated_at": now}}
        updated = await self.threads.find_one_and_update(
            thread_filter,
            update,
            projection={"last_order": 1, "last_step_order": 1},
            return_document=ReturnDocument.AFTER,
        )
        return updated["last_order"], updated["last_step_order"]

    async def append_message(
        self,
        thread_id: str,
        message: Message,
        *,
        new_order: bool = False,
        status: MessageStatus = "success",
        user_id: str | None = None,
        agent_name: str | None = None,
        model: str | None = None,
        finish_reason: str | None = None,
        usage: Usage | None = None,
    ) -> MessageDoc:
        if not is_valid_object_id(thread_id):
            raise NotFoundError(f"Thread {thread_id} not found")
        response_ids = _approval_response_ids(message)
        for approval_id in response_ids:
            if await self.find_unresolved_approval(thread_id, approval_id) is None:
                raise NotFoundError(f"Approval {approval_id} not found or already resolved")
        order, step_order = await self._reserve_key(thread_id, new_order)
        doc = MessageDoc(
            id=create_id(),
            thread_id=thread_id,
            order=order,
            step_order=step_order,
            message=message,
            status=status,
            user_id=user_id,
            agent_name=agent_name,
            model=model,
            finish_reason=finish_reason,
            usage=usage,
            text=extract_text(message),
        )
        raw = doc.model_dump(mode="json", exclude={"id", "created_at"})
        raw["_id"] = ObjectId(doc.id)
        raw["created_at"] = doc.created_at
        if response_ids:
            raw["resolved_approval_ids"] = response_ids
        try:
            await self.messages.insert_one(raw)
        except DuplicateKeyError:
            raise NotFoundError(f"Approval {', '.join(response_ids)} already resolved")
        return doc

    async def append_tool_result(
        self,
        thread_id: str,
        message: Message,
        *,
        turn_message_id: str,
        user_id: str | None = None,
        agent_name: str | None = None,
    ) -> tuple[MessageDoc, bool]:
        """
        Insert the tool message, then $addToSet its call ids on the turn document. The update is
        atomic per document, so exactly one appender sees the set go from open to complete.
        """
        doc = await self.append_message(thread_id, message, user_id=user_id, agent_name=agent_name)
        if not is_valid_object_id(turn_message_id):
            return doc, False
        answered = _result_call_ids(message)
        before = await self.messages.find_one_and_update(
            {"_id": ObjectId(turn_message_id)},
            {"$addToSet": {"answered_tool_call_ids": {"$each": answered}}},
            return_document=ReturnDocument.BEFORE,
        )
        if before is None:
            return doc, False
        required = {
            p.tool_call_id
            for p in _doc_from_mongo(before).message.content
            if isinstance(p, ToolApprovalRequestPart)
        }
        already = set(before.get("answered_tool_call_ids", []))
        closed = bool(required - already) and required <= already | set(answered)
        return doc, closed

    async def get_message(self, message_id: str) -> MessageDoc | None:
        if not is_valid_object_id(message_id):
            return None
        raw = await self.messages.find_one({"_id": ObjectId(message_id)})
        return _doc_from_mongo(raw) if raw else None

    async def list_messages(
        self,
        thread_id: str,
        *,
        cursor: str | None = None,
        num_items: int = DEFAULT_PAGE_SIZE,
        order: Literal["asc", "desc"] = "asc",
    ) -> MessagePage:
        direction = 1 if order == "asc" else -1
        skip = int(cursor) if cursor else 0
        found = self.messages.find({"thread_id": thread_id}).sort(
            [("order", direction), ("step_order", direction)]
        ).skip(skip).limit(num_items + 1)
        raw_docs = await found.to_list(length=num_items + 1)
        is_done = len(raw_docs) <= num_items
        page = [_doc_from_mongo(raw) for raw in raw_docs[:num_items]]
        return MessagePage(
            page=page,
            is_done=is_done,
            continue_cursor=None if is_done else str(skip + num_items),
        )

    async def find_unresolved_approval(self, thread_id: str, approval_id: str) -> PendingApproval | None:
        raw = await self.messages.find_one({
            "thread_id": thread_id,
            "message.content": {"$elemMatch": {"type": "tool-approval-request", "approval_id": approval_id}},
        })
        if raw is None:
            return None
        if await self.messages.find_one({"resolved_approval_ids": approval_id}, projection={"_id": 1}):
            return None
        return find_pending_approval([_doc_from_mongo(raw)], approval_id)


_store: MessageStore | None = None


def get_store() -> MessageStore:
    """Get or create the configured message store."""
    global _store
    if _store is not None:
        return _store

    settings = get_settings()
    backend = settings.store_backend
    if backend == "memory":
        _store = InMemoryMessageStore()
        return _store
    if backend == "mongodb":
        client = AsyncIOMotorClient(settings.mongodb_uri)
        _store = MongoMessageStore(client[settings.env])
        return _store

    raise ConfigurationError(
        f"Unsupported message store backend: {backend}. Use 'memory' or 'mongodb'."
    )
