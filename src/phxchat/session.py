"""Conversation session manager.

Joins the thread index, then every message thread it lists, and keeps per
thread state: join status, membership directory and presence snapshot. One
thread at a time is active; outgoing messages and typing signals go to it.
The most recent successful join becomes active.

Output is published to registered handlers rather than drawn directly, so the
manager has no knowledge of the terminal UI.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from functools import partial
from typing import Any

from phxchat.errors import MalformedPayload
from phxchat.phoenix.messages import (
    JoinReply,
    Member,
    MessageCreate,
    NewMessage,
    PresenceDiff,
    PresenceState,
    ThreadCreate,
    ThreadIndex,
    ThreadSummary,
    TypingSignal,
)
from phxchat.presence import Snapshot, derive_typing, sync_diff, sync_state

logger = logging.getLogger("phxchat.session")

INDEX_TOPIC = "message_threads:index"
THREAD_TOPIC_PREFIX = "message_threads:"


class ConversationState(str, Enum):
    JOINING = "joining"
    JOINED = "joined"
    FAILED = "failed"


class LineKind(str, Enum):
    MESSAGE = "message"
    NOTICE = "notice"
    ERROR = "error"


def format_time_of_day(moment: datetime) -> str:
    """Local wall clock time of a server timestamp. Naive timestamps are UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone().strftime("%H:%M:%S")


@dataclass(frozen=True)
class TranscriptLine:
    """One line of the shared transcript."""

    kind: LineKind
    body: str
    sender: str | None = None
    timestamp: str | None = None

    @property
    def text(self) -> str:
        if self.kind is LineKind.MESSAGE:
            return f"{self.timestamp} <{self.sender}> {self.body}"
        return self.body


@dataclass
class Conversation:
    """A joined (or joining) message thread."""

    id: str
    title: str | None
    channel: Any
    state: ConversationState = ConversationState.JOINING
    members: dict[str, Member] = field(default_factory=dict)
    participant_ids: list[str] = field(default_factory=list)
    presences: Snapshot = field(default_factory=dict)

    @property
    def topic(self) -> str:
        return self.channel.topic

    @property
    def member_names(self) -> list[str]:
        return [self.members[participant].display_name for participant in self.participant_ids]

    def display_name(self, participant_id: str) -> str | None:
        member = self.members.get(participant_id)
        return member.display_name if member else None


class SessionManager:
    """Owns the joined conversations and the active one."""

    def __init__(self, socket: Any, index_topic: str = INDEX_TOPIC) -> None:
        self.socket = socket
        self.index_topic = index_topic
        self.conversations: dict[str, Conversation] = {}
        self.active: Conversation | None = None
        self._index: Any = None
        self._line_handlers: list[Callable[[TranscriptLine], Any]] = []
        self._header_handlers: list[Callable[[list[str], str | None], Any]] = []
        self._typing_handlers: list[Callable[[str, str], Any]] = []

    # Output handlers
    def on_line(self, handler: Callable[[TranscriptLine], Any]) -> None:
        """Register handler for transcript lines."""
        self._line_handlers.append(handler)

    def on_header(self, handler: Callable[[list[str], str | None], Any]) -> None:
        """Register handler for the header. Handler receives (member names, title)."""
        self._header_handlers.append(handler)

    def on_typing(self, handler: Callable[[str, str], Any]) -> None:
        """Register handler for typing text. Handler receives (conversation id, text)."""
        self._typing_handlers.append(handler)

    def notice(self, body: str) -> None:
        self._emit_line(TranscriptLine(LineKind.NOTICE, body))

    def error(self, body: str) -> None:
        self._emit_line(TranscriptLine(LineKind.ERROR, body))

    def _emit_line(self, line: TranscriptLine) -> None:
        for handler in self._line_handlers:
            handler(line)

    def _emit_header(self, conversation: Conversation) -> None:
        for handler in self._header_handlers:
            handler(conversation.member_names, conversation.title)

    def _emit_typing(self, conversation: Conversation) -> None:
        text = derive_typing(conversation.presences, conversation.members)
        for handler in self._typing_handlers:
            handler(conversation.id, text)

    def _malformed(self, conversation: Conversation | None, error: MalformedPayload) -> None:
        where = conversation.topic if conversation else self.index_topic
        logger.warning("Ignoring payload on %s: %s", where, error)
        self.error(f"Ignored malformed {error.kind} event")

    # Index topic
    def attach(self) -> None:
        """Join the index as soon as the socket opens."""
        self.socket.on_open(self.start)

    def start(self) -> None:
        """Join the index topic, then every conversation it lists."""
        if self._index is not None:
            return

        self._index = self.socket.channel(self.index_topic, {})
        self._index.on_close(lambda: self.error("Channel closed"))
        self._index.on_error(lambda _reason: self.error("Channel error"))
        (
            self._index.join()
            .receive("ok", self._on_index_joined)
            .receive("error", self._on_index_error)
            .receive("timeout", self._on_index_timeout)
        )

    def _on_index_joined(self, response: dict[str, Any]) -> None:
        try:
            index = ThreadIndex.parse(response)
        except MalformedPayload as e:
            self._malformed(None, e)
            return

        logger.info("Index lists %d conversations", len(index.data))
        for thread in index.data:
            self.join_conversation(thread)

    def _on_index_error(self, response: dict[str, Any]) -> None:
        logger.error("Index join failed: %s", response.get("reason", response))
        self.error("Failed to join connection management channel")

    def _on_index_timeout(self, _response: dict[str, Any]) -> None:
        logger.error("Index join timed out")
        self.error("Connection timeout")

    # Conversations
    def join_conversation(self, thread: ThreadSummary) -> Conversation:
        """Join a conversation topic. It becomes active once the join succeeds."""
        existing = self.conversations.get(thread.id)
        if existing is not None and existing.state is not ConversationState.FAILED:
            if existing.state is ConversationState.JOINED:
                self._activate(existing)
            return existing
        if existing is not None:
            # the failed channel would otherwise still receive topic broadcasts
            self.socket.remove(existing.channel)

        channel = self.socket.channel(f"{THREAD_TOPIC_PREFIX}{thread.id}", {})
        conversation = Conversation(id=thread.id, title=thread.title, channel=channel)
        self.conversations[thread.id] = conversation

        channel.on("presence_state", partial(self._on_presence_state, conversation))
        channel.on("presence_diff", partial(self._on_presence_diff, conversation))
        channel.on("messages:new", partial(self._on_message, conversation))
        (
            channel.join()
            .receive("ok", partial(self._on_joined, conversation))
            .receive("error", partial(self._on_join_failed, conversation))
            .receive("timeout", partial(self._on_join_failed, conversation))
        )
        return conversation

    def _on_joined(self, conversation: Conversation, response: dict[str, Any]) -> None:
        try:
            reply = JoinReply.parse(response)
        except MalformedPayload as e:
            conversation.state = ConversationState.FAILED
            self._malformed(conversation, e)
            self.error("Failed to join conversation")
            return

        conversation.members = {member.id: member for member in reply.included}
        conversation.participant_ids = [member.id for member in reply.included]
        conversation.state = ConversationState.JOINED
        logger.info("Joined %s with %d members", conversation.topic, len(conversation.members))
        self._activate(conversation)

    def _on_join_failed(self, conversation: Conversation, response: dict[str, Any]) -> None:
        conversation.state = ConversationState.FAILED
        logger.warning("Could not join %s: %s", conversation.topic, response)
        self.error("Failed to join conversation")

    def _activate(self, conversation: Conversation) -> None:
        self.active = conversation
        self._emit_header(conversation)
        self._emit_typing(conversation)

    def _on_message(self, conversation: Conversation, payload: dict[str, Any]) -> None:
        try:
            message = NewMessage.parse(payload)
        except MalformedPayload as e:
            self._malformed(conversation, e)
            return

        sender = conversation.display_name(message.sender_id) or message.sender_id
        self._emit_line(
            TranscriptLine(
                LineKind.MESSAGE,
                message.body,
                sender=sender,
                timestamp=format_time_of_day(message.inserted_at),
            )
        )

    def _on_presence_state(self, conversation: Conversation, payload: dict[str, Any]) -> None:
        try:
            state = PresenceState.parse(payload)
        except MalformedPayload as e:
            self._malformed(conversation, e)
            return

        conversation.presences = sync_state(conversation.presences, state.to_snapshot())
        self._emit_typing(conversation)

    def _on_presence_diff(self, conversation: Conversation, payload: dict[str, Any]) -> None:
        try:
            diff = PresenceDiff.parse(payload)
        except MalformedPayload as e:
            self._malformed(conversation, e)
            return

        conversation.presences = sync_diff(conversation.presences, diff.to_diff())
        self._emit_typing(conversation)

    # Outbound
    def send_message(self, text: str) -> Any:
        """Send a message to the active conversation. No-op without one."""
        if self.active is None:
            logger.debug("No active conversation, message dropped")
            return None
        return self.active.channel.push("messages:create", MessageCreate.build(text).to_payload())

    def send_typing(self, value: bool) -> Any:
        """Send a typing signal to the active conversation.

        Returns False when there is no active conversation and nothing was sent.
        """
        if self.active is None:
            return False
        return self.active.channel.push("messages:typing", TypingSignal.build(value).to_payload())

    def create_conversation(self, participant_ids: list[str]) -> Any:
        """Ask the index to create a conversation, then join it."""
        if self._index is None:
            logger.warning("Cannot create a conversation before the index is joined")
            self.error("Not connected")
            return None

        push = self._index.push(
            "message_threads:create", ThreadCreate.build(participant_ids).to_payload()
        )
        push.receive("ok", self._on_conversation_created)
        push.receive("error", lambda _response: self.error("Failed to create conversation"))
        push.receive("timeout", lambda _response: self.error("Failed to create conversation"))
        return push

    def _on_conversation_created(self, response: dict[str, Any]) -> None:
        try:
            thread = ThreadSummary.parse_reply(response)
        except MalformedPayload as e:
            self._malformed(None, e)
            return
        self.join_conversation(thread)
