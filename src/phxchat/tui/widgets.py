from rich.text import Text
from textual.app import ComposeResult
from textual.reactive import reactive
from textual.widgets import Input, Label, ListItem, ListView, Static

from phxchat.session import LineKind, TranscriptLine


class TranscriptEntry(ListItem):
    """A widget to display a single transcript line."""

    def __init__(self, line: TranscriptLine) -> None:
        super().__init__(classes=f"line-{line.kind.value}")
        self.line = line

    def render_text(self) -> Text:
        if self.line.kind is LineKind.MESSAGE:
            return Text.assemble(
                (f"{self.line.timestamp} ", "dim"),
                (f"<{self.line.sender}>", "bold"),
                f" {self.line.body}",
            )
        if self.line.kind is LineKind.ERROR:
            return Text(self.line.body, style="bold white on red")
        return Text(self.line.body, style="bold black on bright_white")

    def compose(self) -> ComposeResult:
        yield Label(self.render_text())


class MessageList(ListView):
    """Shared, append-only transcript of all conversations."""

    def add_line(self, line: TranscriptLine) -> None:
        self.append(TranscriptEntry(line))
        self.scroll_end(animate=False)


class TopicBar(Static):
    """Members and title of the active conversation."""

    def __init__(self, **kwargs) -> None:
        super().__init__("", **kwargs)

    def set_header(self, members: list[str], title: str | None) -> None:
        header = Text()
        header.append(f"In a conversation with: {', '.join(members)}\n")
        header.append(f"Title: {title or ''}")
        self.update(header)


class ChatInput(Input):
    """Input widget for typing messages."""

    def __init__(self) -> None:
        super().__init__(placeholder="Message, /new <participant>... or /quit")


class TypingIndicator(Static):
    """Shows who is currently typing in the active conversation."""

    names = reactive("")

    def __init__(self, **kwargs) -> None:
        super().__init__("", **kwargs)

    def watch_names(self, names: str) -> None:
        if not names:
            self.update("")
        else:
            self.update(Text(f"{names} is typing..", style="italic"))
