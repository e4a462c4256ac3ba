"""Async Phoenix channels client over websockets."""

import asyncio
import logging
from collections.abc import Callable
from enum import Enum
from typing import Any
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from phxchat.errors import MalformedPayload, TransportError
from phxchat.phoenix.messages import Frame

logger = logging.getLogger("phxchat.phoenix")

PHOENIX_TOPIC = "phoenix"
PROTOCOL_VSN = "2.0.0"


class ChannelEvent(str, Enum):
    """Lifecycle events defined by the Phoenix channels protocol."""

    JOIN = "phx_join"
    LEAVE = "phx_leave"
    REPLY = "phx_reply"
    ERROR = "phx_error"
    CLOSE = "phx_close"
    HEARTBEAT = "heartbeat"


class ChannelState(str, Enum):
    CLOSED = "closed"
    JOINING = "joining"
    JOINED = "joined"
    ERRORED = "errored"
    LEAVING = "leaving"


def _log_task_failure(task: asyncio.Future) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.error("Error in async callback", exc_info=task.exception())


def _invoke(callback: Callable[..., Any], *args: Any) -> None:
    """Run a callback; coroutine results are scheduled on the running loop."""
    try:
        result = callback(*args)
        if asyncio.iscoroutine(result):
            asyncio.ensure_future(result).add_done_callback(_log_task_failure)
    except Exception:
        logger.exception("Error in callback %r", callback)


class Push:
    """An outbound event awaiting an ok / error / timeout reply."""

    def __init__(self, channel: "Channel", event: str, payload: dict[str, Any], timeout: float) -> None:
        self.channel = channel
        self.event = event
        self.payload = payload
        self.timeout = timeout
        self.ref: str | None = None
        self.reply: tuple[str, dict[str, Any]] | None = None
        self._hooks: list[tuple[str, Callable[[dict[str, Any]], Any]]] = []
        self._timer: asyncio.TimerHandle | None = None

    def receive(self, status: str, callback: Callable[[dict[str, Any]], Any]) -> "Push":
        """Register a hook for a reply status. Fires immediately if already replied."""
        if self.reply is not None and self.reply[0] == status:
            _invoke(callback, self.reply[1])
        self._hooks.append((status, callback))
        return self

    def send(self) -> None:
        socket = self.channel.socket
        self.ref = socket.make_ref()
        if self.event == ChannelEvent.JOIN.value:
            self.channel.join_ref = self.ref
        self.channel._pending[self.ref] = self
        self.start_timeout()
        socket.push(
            Frame(
                join_ref=self.channel.join_ref,
                ref=self.ref,
                topic=self.channel.topic,
                event=self.event,
                payload=self.payload,
            )
        )

    def start_timeout(self) -> None:
        self.cancel_timeout()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.timeout, self.trigger, "timeout", {})

    def cancel_timeout(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def trigger(self, status: str, response: dict[str, Any]) -> None:
        """Resolve the push with a reply status and run matching hooks."""
        self.cancel_timeout()
        if self.ref is not None:
            self.channel._pending.pop(self.ref, None)
        self.reply = (status, response)
        for hook_status, callback in list(self._hooks):
            if hook_status == status:
                _invoke(callback, response)


class Channel:
    """A topic on a Phoenix socket."""

    def __init__(self, topic: str, params: dict[str, Any], socket: "Socket") -> None:
        self.topic = topic
        self.params = params
        self.socket = socket
        self.state = ChannelState.CLOSED
        self.join_ref: str | None = None
        self.timeout = socket.timeout
        self._join_push: Push | None = None
        self._bindings: list[tuple[str, Callable[[dict[str, Any]], Any]]] = []
        self._pending: dict[str, Push] = {}
        self._push_buffer: list[Push] = []
        self._error_handlers: list[Callable[[Any], Any]] = []
        self._close_handlers: list[Callable[[], Any]] = []

    @property
    def is_joined(self) -> bool:
        return self.state is ChannelState.JOINED

    def on(self, event: str, callback: Callable[[dict[str, Any]], Any]) -> None:
        """Register a handler for an inbound event. Handler receives the payload."""
        self._bindings.append((event, callback))

    def on_error(self, handler: Callable[[Any], Any]) -> None:
        """Register handler for channel errors. Handler receives the reason."""
        self._error_handlers.append(handler)

    def on_close(self, handler: Callable[[], Any]) -> None:
        """Register handler for channel close."""
        self._close_handlers.append(handler)

    def join(self, timeout: float | None = None) -> Push:
        """Join the topic. A channel may only be joined once."""
        if self._join_push is not None:
            raise TransportError(f"tried to join '{self.topic}' multiple times")

        push = Push(self, ChannelEvent.JOIN.value, self.params, timeout or self.timeout)
        push.receive("ok", self._on_join_ok)
        push.receive("error", self._on_join_failed)
        push.receive("timeout", self._on_join_failed)
        self._join_push = push
        self.state = ChannelState.JOINING
        push.send()
        return push

    def push(self, event: str, payload: dict[str, Any], timeout: float | None = None) -> Push:
        """Send an event; buffered until the join succeeds."""
        if self._join_push is None:
            raise TransportError(f"tried to push '{event}' to '{self.topic}' before joining")

        push = Push(self, event, payload, timeout or self.timeout)
        if self.is_joined:
            push.send()
        else:
            push.start_timeout()
            self._push_buffer.append(push)
        return push

    def leave(self, timeout: float | None = None) -> Push:
        """Leave the topic. Close handlers fire on reply or timeout."""
        self.state = ChannelState.LEAVING
        push = Push(self, ChannelEvent.LEAVE.value, {}, timeout or self.timeout)
        push.receive("ok", lambda _response: self._trigger_close())
        push.receive("timeout", lambda _response: self._trigger_close())
        push.send()
        return push

    def _on_join_ok(self, _response: dict[str, Any]) -> None:
        self.state = ChannelState.JOINED
        buffered, self._push_buffer = self._push_buffer, []
        for push in buffered:
            if push.reply is None:
                push.send()

    def _on_join_failed(self, response: dict[str, Any]) -> None:
        logger.warning("Join of %s failed: %s", self.topic, response)
        self.state = ChannelState.ERRORED

    def handle(self, frame: Frame) -> None:
        """Route an inbound frame addressed to this topic."""
        if frame.join_ref is not None and frame.join_ref != self.join_ref:
            logger.debug("Dropping stale frame for %s (%s)", self.topic, frame.event)
            return

        if frame.event == ChannelEvent.REPLY.value:
            push = self._pending.get(frame.ref or "")
            if push is not None:
                push.trigger(frame.payload.get("status", "error"), frame.payload.get("response", {}))
            return
        if frame.event == ChannelEvent.ERROR.value:
            self.trigger_error(frame.payload)
            return
        if frame.event == ChannelEvent.CLOSE.value:
            self._trigger_close()
            return

        for event, callback in list(self._bindings):
            if event == frame.event:
                _invoke(callback, frame.payload)

    def trigger_error(self, reason: Any) -> None:
        if self.state in (ChannelState.LEAVING, ChannelState.CLOSED):
            return
        self.state = ChannelState.ERRORED
        for handler in list(self._error_handlers):
            _invoke(handler, reason)

    def _trigger_close(self) -> None:
        self.state = ChannelState.CLOSED
        self.socket.remove(self)
        for handler in list(self._close_handlers):
            _invoke(handler)


class Socket:
    """Phoenix socket: one websocket multiplexing many channels.

    Frames are written by a background writer so ``push`` never blocks. A
    heartbeat is sent on the ``phoenix`` topic; if the previous heartbeat has
    not been acknowledged when the next is due the connection is closed.
    """

    def __init__(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        heartbeat_interval: float = 30.0,
        timeout: float = 10.0,
    ) -> None:
        self.endpoint = self.endpoint_url(url, params or {})
        self.heartbeat_interval = heartbeat_interval
        self.timeout = timeout
        self.channels: list[Channel] = []
        self._ref = 0
        self._ws: Any = None
        self._outbox: asyncio.Queue[Frame] = asyncio.Queue()
        self._pending_heartbeat: str | None = None
        self._open_handlers: list[Callable[[], Any]] = []
        self._error_handlers: list[Callable[[Exception], Any]] = []
        self._close_handlers: list[Callable[[], Any]] = []

    @staticmethod
    def endpoint_url(url: str, params: dict[str, Any]) -> str:
        """Build the websocket endpoint, ``<url>/websocket?<params>&vsn=2.0.0``."""
        base = url.rstrip("/")
        if not base.endswith("/websocket"):
            base = f"{base}/websocket"
        query = urlencode({**params, "vsn": PROTOCOL_VSN})
        return f"{base}?{query}"

    @property
    def is_connected(self) -> bool:
        return self._ws is not None

    def on_open(self, handler: Callable[[], Any]) -> None:
        """Register handler for connection established."""
        self._open_handlers.append(handler)

    def on_error(self, handler: Callable[[Exception], Any]) -> None:
        """Register handler for connection failures. Handler receives the exception."""
        self._error_handlers.append(handler)

    def on_close(self, handler: Callable[[], Any]) -> None:
        """Register handler for a clean connection close."""
        self._close_handlers.append(handler)

    def make_ref(self) -> str:
        self._ref += 1
        return str(self._ref)

    def channel(self, topic: str, params: dict[str, Any] | None = None) -> Channel:
        channel = Channel(topic, params or {}, self)
        self.channels.append(channel)
        return channel

    def remove(self, channel: Channel) -> None:
        if channel in self.channels:
            self.channels.remove(channel)

    def push(self, frame: Frame) -> None:
        """Queue a frame for the writer."""
        logger.debug("push %s %s ref=%s", frame.topic, frame.event, frame.ref)
        self._outbox.put_nowait(frame)

    async def connect(self) -> None:
        """Open the websocket."""
        try:
            self._ws = await websockets.connect(self.endpoint)
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            raise TransportError(f"could not connect to {self.endpoint}: {e}") from e
        logger.info("Connected to %s", self.endpoint)

    async def disconnect(self) -> None:
        """Close the websocket."""
        if self._ws is not None:
            await self._ws.close()

    async def run(self) -> None:
        """Connect and process frames until the connection ends.

        Open, error and close handlers report the outcome; nothing is raised.
        """
        try:
            if self._ws is None:
                await self.connect()
        except TransportError as e:
            logger.error("%s", e)
            self._trigger_error(e)
            return

        for handler in list(self._open_handlers):
            _invoke(handler)

        writer = asyncio.create_task(self._write_loop())
        heartbeat = asyncio.create_task(self._heartbeat_loop())
        try:
            await self._read_loop()
        except (OSError, WebSocketException) as e:
            logger.error("Connection lost: %s", e)
            self._teardown(e)
            self._trigger_error(e)
            return
        finally:
            writer.cancel()
            heartbeat.cancel()

        logger.info("Connection closed")
        self._teardown({"reason": "closed"})
        for handler in list(self._close_handlers):
            _invoke(handler)

    async def _read_loop(self) -> None:
        async for raw in self._ws:
            try:
                frame = Frame.from_json(raw)
            except MalformedPayload as e:
                logger.warning("Dropping frame: %s", e)
                continue
            self.dispatch(frame)

    async def _write_loop(self) -> None:
        while True:
            frame = await self._outbox.get()
            try:
                await self._ws.send(frame.to_json())
            except ConnectionClosed:
                logger.warning("Connection closed before %s %s was sent", frame.topic, frame.event)
                return

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            if self._pending_heartbeat is not None:
                logger.warning("Heartbeat timeout, closing connection")
                self._pending_heartbeat = None
                await self._ws.close(reason="heartbeat timeout")
                return
            self._pending_heartbeat = self.make_ref()
            self.push(
                Frame(
                    ref=self._pending_heartbeat,
                    topic=PHOENIX_TOPIC,
                    event=ChannelEvent.HEARTBEAT.value,
                )
            )

    def dispatch(self, frame: Frame) -> None:
        """Route an inbound frame to the heartbeat tracker or its channels."""
        if frame.topic == PHOENIX_TOPIC:
            if frame.ref == self._pending_heartbeat:
                self._pending_heartbeat = None
            return
        for channel in list(self.channels):
            if channel.topic == frame.topic:
                channel.handle(frame)

    def _teardown(self, reason: Any) -> None:
        self._ws = None
        self._pending_heartbeat = None
        for channel in list(self.channels):
            channel.trigger_error(reason)

    def _trigger_error(self, error: Exception) -> None:
        for handler in list(self._error_handlers):
            _invoke(handler, error)
