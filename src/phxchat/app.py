"""Main phxchat Textual application."""

import asyncio
import logging

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.widgets import Input

from phxchat.commands import execute, interpret
from phxchat.config import Settings, load_settings
from phxchat.debounce import TypingDebouncer
from phxchat.phoenix.client import Socket
from phxchat.session import SessionManager, TranscriptLine
from phxchat.tui.widgets import ChatInput, MessageList, TopicBar, TypingIndicator


class PhxChatApp(App):
    """Terminal client for Phoenix message threads."""

    TITLE = "Phoenix Client"

    CSS = """
    TopicBar {
        dock: top;
        height: 2;
        color: #000000;
        background: #f0f0f0;
    }

    MessageList {
        height: 1fr;
    }

    ChatInput {
        dock: bottom;
        height: 1;
        border: none;
        padding: 0 1;
        color: white;
        background: blue;
    }

    TypingIndicator {
        dock: bottom;
        height: 1;
        color: #000000;
        background: #f0f0f0;
    }
    """

    BINDINGS = [
        Binding("ctrl+q", "quit", "Quit"),
        Binding("escape", "focus_input", "Focus input", show=False),
    ]

    def __init__(
        self,
        url: str,
        token: str,
        settings: Settings | None = None,
        socket: Socket | None = None,
    ) -> None:
        super().__init__()
        self.url = url
        self.settings = settings or load_settings()

        # Setup Logger
        self.logger = logging.getLogger("phxchat")
        self.logger.setLevel(self.settings.log.level)
        fh = logging.FileHandler(self.settings.log.file)
        fh.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
        self.logger.addHandler(fh)
        self.logger.info("Application starting...")

        self.socket = socket or Socket(
            url,
            params={"userToken": token},
            heartbeat_interval=self.settings.socket.heartbeat_interval,
            timeout=self.settings.socket.timeout,
        )
        self.session = SessionManager(self.socket, index_topic=self.settings.socket.index_topic)
        self.debouncer = TypingDebouncer(self.session.send_typing, delay=self.settings.typing.delay)
        self._socket_task: asyncio.Task | None = None

    def compose(self) -> ComposeResult:
        yield TopicBar(id="topic-bar")
        yield MessageList(id="message-list")
        yield TypingIndicator(id="typing-indicator")
        yield ChatInput()

    async def on_mount(self) -> None:
        """Wire the session to the widgets and open the socket."""
        self.session.on_line(self.handle_line)
        self.session.on_header(self.handle_header)
        self.session.on_typing(self.handle_typing)

        self.socket.on_open(self.handle_socket_open)
        self.socket.on_error(self.handle_socket_error)
        self.socket.on_close(self.handle_socket_close)
        self.session.attach()

        self.session.notice(f"Connecting to {self.url}")
        self._socket_task = asyncio.create_task(self.socket.run())
        self.action_focus_input()

    async def on_unmount(self) -> None:
        self.debouncer.close()
        if self._socket_task:
            self._socket_task.cancel()
        await self.socket.disconnect()
        self.logger.info("Application stopped")

    def handle_line(self, line: TranscriptLine) -> None:
        self.query_one("#message-list", MessageList).add_line(line)

    def handle_header(self, members: list[str], title: str | None) -> None:
        self.query_one("#topic-bar", TopicBar).set_header(members, title)

    def handle_typing(self, conversation_id: str, text: str) -> None:
        """Only the active conversation's typing text is shown."""
        active = self.session.active
        if active is not None and active.id == conversation_id:
            self.query_one("#typing-indicator", TypingIndicator).names = text

    def handle_socket_open(self) -> None:
        self.session.notice("Connection established")

    def handle_socket_error(self, error: Exception) -> None:
        """A connection error is fatal."""
        self.logger.error("Socket error: %s", error)
        self.session.error("The connection closed due to an error")
        self.exit(return_code=1, message="The connection closed due to an error")

    def handle_socket_close(self) -> None:
        self.session.error("Connection closed")

    def action_focus_input(self) -> None:
        """Focus the chat input."""
        self.query_one(ChatInput).focus()

    def on_input_changed(self, event: Input.Changed) -> None:
        """Report local typing to the active conversation."""
        if event.value:
            self.debouncer.keystroke()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        """Send a message or run a slash command."""
        text = event.value
        event.input.clear()
        if not text:
            return

        if not execute(interpret(text), self.session):
            self.exit()
