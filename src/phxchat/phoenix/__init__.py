"""Phoenix channels transport."""

from phxchat.phoenix.client import Channel, Push, Socket
from phxchat.phoenix.messages import Frame

__all__ = ["Channel", "Frame", "Push", "Socket"]
