from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from agent_runtime.core.errors import MessageStoreError
from agent_runtime.core.messages import Message, ToolCallRequest
from agent_runtime.state.message_store import MessageStore


def _call(call_id: str, name: str = "get_weather", **args) -> ToolCallRequest:
    return ToolCallRequest(id=call_id, name=name, arguments=args, raw_arguments=json.dumps(args))


def test_append_preserves_order_and_returns_index() -> None:
    store = MessageStore()
    assert store.append(Message.system("sys")) == 0
    assert store.append(Message.user("hi")) == 1
    assert store.append(Message.assistant("hello")) == 2
    assert [m.role for m in store.view()] == ["system", "user", "assistant"]
    assert len(store) == 3


def test_view_is_an_immutable_snapshot() -> None:
    store = MessageStore([Message.user("a")])
    snap = store.view()
    store.append(Message.assistant("b"))
    assert isinstance(snap, tuple)
    assert len(snap) == 1
    assert len(store.view()) == 2


def test_messages_are_frozen() -> None:
    m = Message.user("hi")
    with pytest.raises(ValidationError):
        m.content = "changed"  # type: ignore[misc]


def test_tool_result_must_match_a_pending_request() -> None:
    store = MessageStore([Message.user("q")])
    with pytest.raises(MessageStoreError):
        store.append(Message.tool_result(tool_call_id="nope", content="{}"))


def test_tool_result_cannot_answer_the_same_request_twice() -> None:
    store = MessageStore([Message.user("q"), Message.assistant(None, tool_calls=[_call("c1", city="Tokyo")])])
    store.append(Message.tool_result(tool_call_id="c1", content="{}"))
    with pytest.raises(MessageStoreError):
        store.append(Message.tool_result(tool_call_id="c1", content="{}"))


def test_non_tool_message_rejected_while_requests_are_unanswered() -> None:
    store = MessageStore([Message.user("q"), Message.assistant(None, tool_calls=[_call("c1"), _call("c2")])])
    store.append(Message.tool_result(tool_call_id="c1", content="{}"))
    assert [c.id for c in store.pending_tool_calls()] == ["c2"]
    with pytest.raises(MessageStoreError):
        store.append(Message.assistant("done"))
    store.append(Message.tool_result(tool_call_id="c2", content="{}"))
    assert not store.has_pending_tool_calls
    store.append(Message.assistant("done"))


def test_tool_call_ids_are_unique_within_a_conversation() -> None:
    store = MessageStore([Message.user("q"), Message.assistant(None, tool_calls=[_call("c1")])])
    store.append(Message.tool_result(tool_call_id="c1", content="{}"))
    with pytest.raises(MessageStoreError):
        store.append(Message.assistant(None, tool_calls=[_call("c1")]))


def test_role_field_constraints() -> None:
    with pytest.raises(ValidationError):
        Message(role="user", content="x", tool_calls=[_call("c1")])
    with pytest.raises(ValidationError):
        Message(role="tool", content="x")
    with pytest.raises(ValidationError):
        Message(role="user", content="x", tool_call_id="c1")
    with pytest.raises(ValidationError):
        Message(role="user", content=None)
    assert Message.assistant(None, tool_calls=[_call("c1")]).requests_tools


def test_wire_round_trip_keeps_raw_arguments() -> None:
    m = Message.assistant(None, tool_calls=[ToolCallRequest(id="c1", name="f", raw_arguments="{not json")])
    wire = m.to_wire()
    assert wire["tool_calls"][0]["function"]["arguments"] == "{not json"
    back = Message.from_wire(wire)
    assert back.tool_calls is not None
    assert back.tool_calls[0].arguments == {}
    assert back.tool_calls[0].raw_arguments == "{not json"


def test_tool_requests_and_system_messages_helpers() -> None:
    store = MessageStore(
        [
            Message.system("sys"),
            Message.user("q"),
            Message.assistant(None, tool_calls=[_call("c1", name="a"), _call("c2", name="b")]),
            Message.tool_result(tool_call_id="c1", content="{}"),
            Message.tool_result(tool_call_id="c2", content="{}"),
        ]
    )
    assert [c.name for c in store.tool_requests()] == ["a", "b"]
    assert [m.content for m in store.system_messages()] == ["sys"]
    assert store.to_wire()[0] == {"role": "system", "content": "sys"}
