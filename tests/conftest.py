"""Shared fakes for session and debouncer tests."""

import pytest

from phxchat.session import SessionManager


class FakePush:
    """Receivable handle whose replies are triggered by the test."""

    def __init__(self, event, payload):
        self.event = event
        self.payload = payload
        self.hooks = []

    def receive(self, status, callback):
        self.hooks.append((status, callback))
        return self

    def reply(self, status, response=None):
        for hook_status, callback in self.hooks:
            if hook_status == status:
                callback(response if response is not None else {})


class FakeChannel:
    def __init__(self, topic, params):
        self.topic = topic
        self.params = params
        self.bindings = {}
        self.pushes = []
        self.join_push = None
        self.error_handlers = []
        self.close_handlers = []

    def on(self, event, callback):
        self.bindings.setdefault(event, []).append(callback)

    def on_error(self, handler):
        self.error_handlers.append(handler)

    def on_close(self, handler):
        self.close_handlers.append(handler)

    def join(self):
        self.join_push = FakePush("phx_join", self.params)
        return self.join_push

    def push(self, event, payload):
        push = FakePush(event, payload)
        self.pushes.append(push)
        return push

    def emit(self, event, payload):
        for callback in self.bindings.get(event, []):
            callback(payload)


class FakeSocket:
    def __init__(self):
        self.channels = {}
        self.open_handlers = []
        self.error_handlers = []
        self.close_handlers = []
        self.removed = []

    def on_open(self, handler):
        self.open_handlers.append(handler)

    def on_error(self, handler):
        self.error_handlers.append(handler)

    def on_close(self, handler):
        self.close_handlers.append(handler)

    def remove(self, channel):
        self.removed.append(channel)
        if self.channels.get(channel.topic) is channel:
            del self.channels[channel.topic]

    async def run(self):
        pass

    async def disconnect(self):
        pass

    def channel(self, topic, params=None):
        channel = FakeChannel(topic, params or {})
        self.channels[topic] = channel
        return channel

    def open(self):
        for handler in self.open_handlers:
            handler()


class FakeTimer:
    def __init__(self, when, callback, args):
        self.when = when
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeLoop:
    """Virtual clock exposing the ``call_later`` part of an event loop."""

    def __init__(self):
        self.now = 0.0
        self.timers = []

    def call_later(self, delay, callback, *args):
        timer = FakeTimer(self.now + delay, callback, args)
        self.timers.append(timer)
        return timer

    @property
    def pending(self):
        return [timer for timer in self.timers if not timer.cancelled]

    def advance_to(self, moment):
        while True:
            due = [timer for timer in self.pending if timer.when <= moment]
            if not due:
                break
            timer = min(due, key=lambda t: t.when)
            self.timers.remove(timer)
            self.now = timer.when
            timer.callback(*timer.args)
        self.now = moment


@pytest.fixture
def socket():
    return FakeSocket()


@pytest.fixture
def session(socket):
    session = SessionManager(socket)
    session.lines = []
    session.headers = []
    session.typing = []
    session.on_line(session.lines.append)
    session.on_header(lambda members, title: session.headers.append((members, title)))
    session.on_typing(lambda conversation_id, text: session.typing.append((conversation_id, text)))
    session.attach()
    return session


@pytest.fixture
def loop():
    return FakeLoop()
