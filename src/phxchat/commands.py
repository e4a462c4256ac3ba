"""Slash commands typed into the input bar."""

import logging
from dataclasses import dataclass
from typing import Union

from phxchat.session import SessionManager

logger = logging.getLogger("phxchat.commands")

COMMAND_PREFIX = "/"


@dataclass(frozen=True)
class MessageCommand:
    """Plain text, sent to the active conversation."""

    text: str


@dataclass(frozen=True)
class QuitCommand:
    pass


@dataclass(frozen=True)
class NewConversationCommand:
    participant_ids: tuple[str, ...]


@dataclass(frozen=True)
class UnknownCommand:
    name: str
    args: tuple[str, ...] = ()


Command = Union[MessageCommand, QuitCommand, NewConversationCommand, UnknownCommand]


def interpret(line: str) -> Command:
    """Parse an input line. Lines without the prefix are messages, verbatim."""
    if not line.startswith(COMMAND_PREFIX):
        return MessageCommand(line)

    parts = line[len(COMMAND_PREFIX):].split()
    if not parts:
        return UnknownCommand("")

    name, *args = parts
    if name == "quit":
        return QuitCommand()
    if name == "new":
        return NewConversationCommand(tuple(args))
    return UnknownCommand(name, tuple(args))


def execute(command: Command, session: SessionManager) -> bool:
    """Apply a command to the session. Returns False when the client should exit."""
    if isinstance(command, QuitCommand):
        return False
    if isinstance(command, NewConversationCommand):
        session.create_conversation(list(command.participant_ids))
    elif isinstance(command, MessageCommand):
        session.send_message(command.text)
    else:
        logger.debug("Ignoring unknown command /%s", command.name)
    return True
