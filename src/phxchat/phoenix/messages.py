"""Phoenix frames and the JSON:API style payloads exchanged on message thread topics."""

import json
from datetime import datetime
from typing import Annotated, Any, ClassVar, Literal, TypeVar

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, RootModel, ValidationError

from phxchat.errors import MalformedPayload

# Resource ids arrive as strings or integers depending on the backend.
ResourceId = Annotated[str, BeforeValidator(lambda value: str(value) if isinstance(value, int) else value)]

R = TypeVar("R", bound="Record")


class Frame(BaseModel):
    """A single Phoenix v2 serializer frame: [join_ref, ref, topic, event, payload]."""

    join_ref: str | None = None
    ref: str | None = None
    topic: str
    event: str
    payload: dict[str, Any] = Field(default_factory=dict)

    def to_json(self) -> str:
        """Serialize frame to the v2 array form."""
        return json.dumps([self.join_ref, self.ref, self.topic, self.event, self.payload])

    @classmethod
    def from_json(cls, data: str | bytes) -> "Frame":
        """Deserialize frame from the v2 array form."""
        try:
            decoded = json.loads(data)
        except ValueError as e:
            raise MalformedPayload("frame", str(e)) from e

        if not isinstance(decoded, list) or len(decoded) != 5:
            raise MalformedPayload("frame", "expected a five element array")

        join_ref, ref, topic, event, payload = decoded
        try:
            return cls(join_ref=join_ref, ref=ref, topic=topic, event=event, payload=payload)
        except ValidationError as e:
            raise MalformedPayload("frame", str(e)) from e


class Record(BaseModel):
    """Base for inbound payload records."""

    KIND: ClassVar[str] = "payload"

    @classmethod
    def parse(cls: type[R], payload: Any) -> R:
        """Validate a raw payload, raising MalformedPayload on mismatch."""
        try:
            return cls.model_validate(payload)
        except ValidationError as e:
            raise MalformedPayload(cls.KIND, str(e)) from e


# Outbound

class MessageAttributes(BaseModel):
    body: str


class MessageResource(BaseModel):
    type: Literal["messages"] = "messages"
    attributes: MessageAttributes


class MessageCreate(BaseModel):
    """Payload for the ``messages:create`` event."""

    data: MessageResource

    @classmethod
    def build(cls, body: str) -> "MessageCreate":
        return cls(data=MessageResource(attributes=MessageAttributes(body=body)))

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class TypingAttributes(BaseModel):
    value: bool


class TypingResource(BaseModel):
    type: Literal["typing"] = "typing"
    attributes: TypingAttributes


class TypingSignal(BaseModel):
    """Payload for the ``messages:typing`` event."""

    data: TypingResource

    @classmethod
    def build(cls, value: bool) -> "TypingSignal":
        return cls(data=TypingResource(attributes=TypingAttributes(value=value)))

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class ParticipantRef(BaseModel):
    type: Literal["message-participants"] = "message-participants"
    id: str


class ThreadCreateAttributes(BaseModel):
    message_participants: list[ParticipantRef]


class ThreadCreateResource(BaseModel):
    type: Literal["message-threads"] = "message-threads"
    attributes: ThreadCreateAttributes


class ThreadCreate(BaseModel):
    """Payload for the ``message_threads:create`` event on the index topic."""

    data: ThreadCreateResource

    @classmethod
    def build(cls, participant_ids: list[str]) -> "ThreadCreate":
        participants = [ParticipantRef(id=participant) for participant in participant_ids]
        return cls(
            data=ThreadCreateResource(
                attributes=ThreadCreateAttributes(message_participants=participants)
            )
        )

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


# Inbound

class UserRef(BaseModel):
    id: ResourceId


class NewMessageRelationships(BaseModel):
    users: UserRef


class NewMessageAttributes(BaseModel):
    model_config = ConfigDict(extra="allow")

    body: str
    inserted_at: datetime


class NewMessageData(BaseModel):
    attributes: NewMessageAttributes
    relationships: NewMessageRelationships


class NewMessage(Record):
    """Payload of the ``messages:new`` event."""

    KIND: ClassVar[str] = "messages:new"

    data: NewMessageData

    @property
    def body(self) -> str:
        return self.data.attributes.body

    @property
    def inserted_at(self) -> datetime:
        return self.data.attributes.inserted_at

    @property
    def sender_id(self) -> str:
        return self.data.relationships.users.id


class MemberAttributes(BaseModel):
    model_config = ConfigDict(extra="allow")

    username: str


class Member(BaseModel):
    """A conversation member from the ``included`` list of a join reply."""

    id: ResourceId
    attributes: MemberAttributes

    @property
    def display_name(self) -> str:
        return self.attributes.username


class JoinReply(Record):
    """Reply to joining a message thread topic."""

    KIND: ClassVar[str] = "join reply"

    included: list[Member] = Field(default_factory=list)


class ThreadAttributes(BaseModel):
    model_config = ConfigDict(extra="allow")

    title: str | None = None


class ThreadSummary(Record):
    """A message thread resource as listed by the index topic."""

    KIND: ClassVar[str] = "message thread"

    id: ResourceId
    attributes: ThreadAttributes = Field(default_factory=ThreadAttributes)

    @property
    def title(self) -> str | None:
        return self.attributes.title

    @classmethod
    def parse_reply(cls, payload: Any) -> "ThreadSummary":
        """Parse a create reply, which may or may not be wrapped in ``data``."""
        if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
            payload = payload["data"]
        return cls.parse(payload)


class ThreadIndex(Record):
    """Reply to joining the index topic."""

    KIND: ClassVar[str] = "thread index"

    data: list[ThreadSummary] = Field(default_factory=list)


class PresenceEntry(BaseModel):
    model_config = ConfigDict(extra="allow")

    metas: list[Any] = Field(default_factory=list)


class PresenceState(RootModel[dict[str, PresenceEntry]]):
    """Payload of the ``presence_state`` event."""

    @classmethod
    def parse(cls, payload: Any) -> "PresenceState":
        try:
            return cls.model_validate(payload)
        except ValidationError as e:
            raise MalformedPayload("presence_state", str(e)) from e

    def to_snapshot(self) -> dict[str, Any]:
        return self.model_dump()


class PresenceDiff(Record):
    """Payload of the ``presence_diff`` event."""

    KIND: ClassVar[str] = "presence_diff"

    joins: dict[str, PresenceEntry] = Field(default_factory=dict)
    leaves: dict[str, PresenceEntry] = Field(default_factory=dict)

    def to_diff(self) -> dict[str, Any]:
        return self.model_dump()
