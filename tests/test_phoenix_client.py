"""Tests for the Phoenix socket and channel state handling, without a network."""

import asyncio

import pytest

from phxchat.errors import TransportError
from phxchat.phoenix.client import ChannelState, Socket
from phxchat.phoenix.messages import Frame
from phxchat.session import SessionManager


@pytest.fixture
def socket():
    socket = Socket("ws://localhost:4000/socket", params={"userToken": "secret"}, timeout=0.05)
    socket.sent = []
    socket.push = socket.sent.append
    return socket


def _reply(socket, frame, status="ok", response=None):
    socket.dispatch(
        Frame(
            join_ref=frame.join_ref,
            ref=frame.ref,
            topic=frame.topic,
            event="phx_reply",
            payload={"status": status, "response": response or {}},
        )
    )


def test_endpoint_url():
    assert Socket.endpoint_url("ws://host/socket", {"userToken": "t"}) == (
        "ws://host/socket/websocket?userToken=t&vsn=2.0.0"
    )
    assert Socket.endpoint_url("ws://host/socket/websocket/", {}) == "ws://host/socket/websocket?vsn=2.0.0"


@pytest.mark.asyncio
async def test_join_sends_frame_and_handles_ok(socket):
    channel = socket.channel("message_threads:index")
    replies = []

    channel.join().receive("ok", replies.append)
    frame = socket.sent[0]
    _reply(socket, frame, response={"data": []})

    assert (frame.topic, frame.event, frame.join_ref) == ("message_threads:index", "phx_join", frame.ref)
    assert replies == [{"data": []}]
    assert channel.state is ChannelState.JOINED


@pytest.mark.asyncio
async def test_join_error(socket):
    channel = socket.channel("message_threads:c1")
    errors = []

    channel.join().receive("error", errors.append)
    _reply(socket, socket.sent[0], status="error", response={"reason": "unauthorized"})

    assert errors == [{"reason": "unauthorized"}]
    assert channel.state is ChannelState.ERRORED


@pytest.mark.asyncio
async def test_join_timeout(socket):
    channel = socket.channel("message_threads:c1")
    timeouts = []

    channel.join().receive("timeout", timeouts.append)
    await asyncio.sleep(0.1)

    assert timeouts == [{}]
    assert channel.state is ChannelState.ERRORED


@pytest.mark.asyncio
async def test_late_reply_after_timeout_is_ignored(socket):
    channel = socket.channel("message_threads:c1")
    oks = []

    channel.join().receive("ok", oks.append)
    await asyncio.sleep(0.1)
    _reply(socket, socket.sent[0])

    assert oks == []


@pytest.mark.asyncio
async def test_joining_twice_is_an_error(socket):
    channel = socket.channel("message_threads:c1")
    channel.join()

    with pytest.raises(TransportError):
        channel.join()


@pytest.mark.asyncio
async def test_push_before_join_is_an_error(socket):
    with pytest.raises(TransportError):
        socket.channel("message_threads:c1").push("messages:create", {})


@pytest.mark.asyncio
async def test_pushes_are_buffered_until_joined(socket):
    channel = socket.channel("message_threads:c1")
    channel.join()
    channel.push("messages:typing", {"value": True})

    assert [frame.event for frame in socket.sent] == ["phx_join"]

    _reply(socket, socket.sent[0])

    assert [frame.event for frame in socket.sent] == ["phx_join", "messages:typing"]
    assert socket.sent[1].join_ref == socket.sent[0].ref


@pytest.mark.asyncio
async def test_push_reply_reaches_hooks(socket):
    channel = socket.channel("message_threads:index")
    channel.join()
    _reply(socket, socket.sent[0])
    created = []

    channel.push("message_threads:create", {}).receive("ok", created.append)
    _reply(socket, socket.sent[1], response={"id": "c9"})

    assert created == [{"id": "c9"}]


@pytest.mark.asyncio
async def test_receive_after_reply_fires_immediately(socket):
    channel = socket.channel("message_threads:c1")
    push = channel.join()
    _reply(socket, socket.sent[0], response={"included": []})
    late = []

    push.receive("ok", late.append)

    assert late == [{"included": []}]


@pytest.mark.asyncio
async def test_inbound_events_reach_bindings(socket):
    channel = socket.channel("message_threads:c1")
    other = socket.channel("message_threads:c2")
    received, elsewhere = [], []
    channel.on("messages:new", received.append)
    other.on("messages:new", elsewhere.append)
    channel.join()

    socket.dispatch(Frame(topic="message_threads:c1", event="messages:new", payload={"x": 1}))

    assert received == [{"x": 1}]
    assert elsewhere == []


@pytest.mark.asyncio
async def test_stale_join_ref_is_dropped(socket):
    channel = socket.channel("message_threads:c1")
    received = []
    channel.on("presence_diff", received.append)
    channel.join()

    socket.dispatch(Frame(join_ref="stale", topic="message_threads:c1", event="presence_diff", payload={}))

    assert received == []


@pytest.mark.asyncio
async def test_handler_errors_do_not_propagate(socket):
    channel = socket.channel("message_threads:c1")
    received = []

    def broken(_payload):
        raise RuntimeError("handler bug")

    channel.on("messages:new", broken)
    channel.on("messages:new", received.append)
    channel.join()

    socket.dispatch(Frame(topic="message_threads:c1", event="messages:new", payload={}))

    assert received == [{}]


@pytest.mark.asyncio
async def test_channel_error_and_close(socket):
    channel = socket.channel("message_threads:index")
    events = []
    channel.on_error(lambda reason: events.append(("error", reason)))
    channel.on_close(lambda: events.append(("close", None)))
    channel.join()
    _reply(socket, socket.sent[0])

    socket.dispatch(Frame(join_ref=channel.join_ref, topic=channel.topic, event="phx_error", payload={}))
    socket.dispatch(Frame(join_ref=channel.join_ref, topic=channel.topic, event="phx_close", payload={}))

    assert events == [("error", {}), ("close", None)]
    assert channel not in socket.channels


@pytest.mark.asyncio
async def test_connection_failure_fires_error_handlers():
    socket = Socket("ws://127.0.0.1:1/socket", timeout=0.05)
    errors, opened = [], []
    socket.on_error(errors.append)
    socket.on_open(lambda: opened.append(True))

    await socket.run()

    assert opened == []
    assert len(errors) == 1
    assert isinstance(errors[0], TransportError)


@pytest.mark.asyncio
async def test_rejoined_conversation_receives_each_broadcast_once(socket):
    session = SessionManager(socket)
    lines = []
    session.on_line(lines.append)
    session.start()
    _reply(socket, socket.sent[0], response={"data": [{"id": "c1", "attributes": {"title": "One"}}]})
    _reply(socket, socket.sent[1], status="error", response={"reason": "forbidden"})

    session.create_conversation(["u1"])
    _reply(socket, socket.sent[2], response={"id": "c1", "attributes": {"title": "One"}})
    _reply(socket, socket.sent[3], response={"included": [{"id": "u1", "attributes": {"username": "alice"}}]})
    lines.clear()

    socket.dispatch(
        Frame(
            topic="message_threads:c1",
            event="messages:new",
            payload={
                "data": {
                    "attributes": {"body": "hello", "inserted_at": "2024-05-01T12:30:15Z"},
                    "relationships": {"users": {"id": "u1"}},
                }
            },
        )
    )

    assert [(line.sender, line.body) for line in lines] == [("alice", "hello")]
    assert [channel.topic for channel in socket.channels] == ["message_threads:index", "message_threads:c1"]
