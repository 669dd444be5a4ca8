"""Tests for the message stores: in-memory, and MongoDB against mocked motor collections."""
from unittest.mock import AsyncMock, MagicMock, call

import pytest
from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

import threadloop as tl
from threadloop.agent.messages import (
    Message,
    MessageDoc,
    TextOutput,
    ToolApprovalRequestPart,
    ToolApprovalResponsePart,
    ToolResultPart,
)
from threadloop.agent.threads import MongoMessageStore


def _request(approval_id, tool_call_id):
    return ToolApprovalRequestPart(
        approval_id=approval_id, tool_call_id=tool_call_id, tool_name="delete_file", input={"filename": "x"}
    )


def _response(approval_id):
    return Message(role="tool", content=[ToolApprovalResponsePart(approval_id=approval_id, approved=True)])


def _result(tool_call_id):
    return Message(role="tool", content=[
        ToolResultPart(tool_call_id=tool_call_id, tool_name="delete_file", output=TextOutput(value="ok")),
    ])


@pytest.mark.asyncio
async def test_create_and_get_thread(store):
    thread_id = await store.create_thread(user_id="u1", title="Files")
    thread = await store.get_thread(thread_id)
    assert thread.id == thread_id
    assert thread.title == "Files"
    assert thread.user_id == "u1"
    assert await store.get_thread("missing") is None
    assert await store.update_thread_title(thread_id, "Renamed")
    assert (await store.get_thread(thread_id)).title == "Renamed"
    assert [t.id for t in await store.list_threads("u1")] == [thread_id]
    assert await store.list_threads("someone-else") == []


@pytest.mark.asyncio
async def test_append_assigns_order_and_step_order(store):
    thread_id = await store.create_thread()
    user = await store.append_message(thread_id, Message.user("one"), new_order=True)
    reply = await store.append_message(thread_id, Message(role="assistant", content=[]))
    second = await store.append_message(thread_id, Message.user("two"), new_order=True)
    assert (user.key, reply.key, second.key) == ((0, 0), (0, 1), (1, 0))
    assert (await store.get_message(reply.id)).id == reply.id


@pytest.mark.asyncio
async def test_append_to_unknown_thread(store):
    with pytest.raises(tl.common.NotFoundError):
        await store.append_message("missing", Message.user("hi"))


@pytest.mark.asyncio
async def test_pagination(store):
    thread_id = await store.create_thread()
    for i in range(5):
        await store.append_message(thread_id, Message.user(str(i)), new_order=True)

    page = await store.list_messages(thread_id, num_items=2)
    assert [d.text for d in page.page] == ["0", "1"]
    assert not page.is_done
    page = await store.list_messages(thread_id, cursor=page.continue_cursor, num_items=2)
    assert [d.text for d in page.page] == ["2", "3"]
    latest = await store.list_messages(thread_id, num_items=1, order="desc")
    assert latest.page[0].text == "4"
    assert [d.text for d in await tl.agent.list_all_messages(store, thread_id)] == ["0", "1", "2", "3", "4"]


@pytest.mark.asyncio
async def test_returned_docs_are_copies(store):
    thread_id = await store.create_thread()
    doc = await store.append_message(thread_id, Message.user("original"), new_order=True)
    doc.message.content.clear()
    stored = await store.get_message(doc.id)
    assert stored.text == "original"
    assert len(stored.message.content) == 1


@pytest.mark.asyncio
async def test_approval_response_is_accepted_once(store):
    thread_id = await store.create_thread()
    await store.append_message(thread_id, Message(role="assistant", content=[
        ToolApprovalRequestPart(approval_id="a1", tool_call_id="c1", tool_name="delete_file", input={}),
    ]))
    assert (await store.find_unresolved_approval(thread_id, "a1")).tool_call_id == "c1"

    response = Message(role="tool", content=[ToolApprovalResponsePart(approval_id="a1", approved=True)])
    await store.append_message(thread_id, response)
    with pytest.raises(tl.common.NotFoundError):
        await store.append_message(thread_id, response)
    assert await store.find_unresolved_approval(thread_id, "a1") is None


def test_get_store_defaults_to_memory(monkeypatch):
    monkeypatch.setattr("threadloop.agent.threads._store", None)
    store = tl.agent.get_store()
    assert isinstance(store, tl.agent.InMemoryMessageStore)
    assert tl.agent.get_store() is store


@pytest.mark.asyncio
async def test_append_tool_result_flags_the_append_that_closes_the_turn(store):
    thread_id = await store.create_thread()
    turn = await store.append_message(thread_id, Message(role="assistant", content=[
        _request("a1", "c1"),
        _request("a2", "c2"),
    ]))
    await store.append_message(thread_id, _response("a1"))
    await store.append_message(thread_id, _response("a2"))

    _, closed = await store.append_tool_result(thread_id, _result("c1"), turn_message_id=turn.id)
    assert not closed
    doc, closed = await store.append_tool_result(thread_id, _result("c2"), turn_message_id=turn.id)
    assert closed
    assert doc.message.content[0].tool_call_id == "c2"
    _, closed = await store.append_tool_result(thread_id, _result("c2"), turn_message_id=turn.id)
    assert not closed


def _mongo_store():
    threads = MagicMock()
    messages = MagicMock()
    db = MagicMock()
    db.__getitem__.side_effect = {"agent_threads": threads, "agent_messages": messages}.__getitem__
    threads.find_one = AsyncMock(return_value={"last_order": 0})
    threads.find_one_and_update = AsyncMock(return_value={"last_order": 0, "last_step_order": 2})
    messages.insert_one = AsyncMock()
    return MongoMessageStore(db), messages


def _raw_turn(thread_id, *requests):
    doc = MessageDoc(
        id=str(ObjectId()),
        thread_id=thread_id,
        order=0,
        step_order=1,
        message=Message(role="assistant", content=list(requests)),
    )
    raw = doc.model_dump(mode="json", exclude={"id"})
    raw["_id"] = ObjectId(doc.id)
    return raw


@pytest.mark.asyncio
async def test_mongo_duplicate_approval_response_is_not_found():
    store, messages = _mongo_store()
    thread_id = str(ObjectId())
    messages.find_one = AsyncMock(side_effect=[_raw_turn(thread_id, _request("a1", "c1")), None])
    messages.insert_one = AsyncMock(side_effect=DuplicateKeyError("E11000 duplicate key error"))

    with pytest.raises(tl.common.NotFoundError, match="already resolved"):
        await store.append_message(thread_id, _response("a1"))

    inserted = messages.insert_one.call_args[0][0]
    assert inserted["resolved_approval_ids"] == ["a1"]
    assert inserted["thread_id"] == thread_id


@pytest.mark.asyncio
async def test_mongo_answered_approval_is_rejected_before_insert():
    store, messages = _mongo_store()
    thread_id = str(ObjectId())
    messages.find_one = AsyncMock(side_effect=[_raw_turn(thread_id, _request("a1", "c1")), {"_id": ObjectId()}])

    with pytest.raises(tl.common.NotFoundError):
        await store.append_message(thread_id, _response("a1"))

    messages.insert_one.assert_not_called()


@pytest.mark.asyncio
async def test_mongo_indexes_make_responses_unique():
    store, messages = _mongo_store()
    messages.create_index = AsyncMock()
    store.threads.create_index = AsyncMock()

    await store.ensure_indexes()

    assert call("resolved_approval_ids", unique=True, sparse=True) in messages.create_index.call_args_list


@pytest.mark.asyncio
async def test_mongo_append_tool_result_closes_turn_once():
    store, messages = _mongo_store()
    thread_id = str(ObjectId())
    raw_turn = _raw_turn(thread_id, _request("a1", "c1"), _request("a2", "c2"))
    turn_id = str(raw_turn["_id"])
    messages.find_one_and_update = AsyncMock(side_effect=[
        raw_turn,
        {**raw_turn, "answered_tool_call_ids": ["c1"]},
        {**raw_turn, "answered_tool_call_ids": ["c1", "c2"]},
    ])

    _, closed = await store.append_tool_result(thread_id, _result("c1"), turn_message_id=turn_id)
    assert not closed
    _, closed = await store.append_tool_result(thread_id, _result("c2"), turn_message_id=turn_id)
    assert closed
    _, closed = await store.append_tool_result(thread_id, _result("c2"), turn_message_id=turn_id)
    assert not closed

    args, kwargs = messages.find_one_and_update.call_args_list[1]
    assert args[0] == {"_id": raw_turn["_id"]}
    assert args[1] == {"$addToSet": {"answered_tool_call_ids": {"$each": ["c2"]}}}
    assert kwargs["return_document"] == ReturnDocument.BEFORE
