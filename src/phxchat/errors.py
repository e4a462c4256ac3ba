"""Error types raised by phxchat."""


class PhxChatError(Exception):
    """Base class for phxchat errors."""


class TransportError(PhxChatError):
    """The Phoenix socket is not usable."""


class MalformedPayload(PhxChatError):
    """An inbound payload did not match its expected shape."""

    def __init__(self, kind: str, detail: str) -> None:
        super().__init__(f"malformed {kind} payload: {detail}")
        self.kind = kind
        self.detail = detail
