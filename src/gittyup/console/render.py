"""Render session log entries to a terminal with rich.

Log segments carry one of two kinds of style: the web console's color
classes (``text-red-600 dark:text-red-400``) or a rich style string produced
by the ANSI converter (``bold green``). Both are turned into rich styles here.
"""

from __future__ import annotations

import re

from rich.console import Console
from rich.errors import StyleSyntaxError
from rich.style import Style
from rich.text import Text

from gittyup.session.state import LogEntry, Segment, SessionState

_COLOR_CLASS_RE = re.compile(r"(?:^|\s)text-(?P<color>[a-z]+)-(?P<shade>\d{3})")

# Palette names to the nearest terminal color
_CLASS_COLORS = {
    "slate": "bright_black",
    "red": "red",
    "emerald": "green",
    "cyan": "cyan",
    "blue": "blue",
    "amber": "yellow",
    "pink": "magenta",
    "teal": "bright_cyan",
    "indigo": "bright_blue",
}


def rich_style(style: str) -> Style:
    """Translate a segment style into a rich Style."""
    match = _COLOR_CLASS_RE.search(style)
    if match is not None:
        color = _CLASS_COLORS.get(match.group("color"))
        if color == "bright_black" and int(match.group("shade")) >= 700:
            # Dark slate is the sandbox's body text
            return Style()
        return Style(color=color) if color else Style()
    try:
        return Style.parse(style)
    except StyleSyntaxError:
        return Style()


def segment_text(segment: Segment) -> Text:
    style = rich_style(segment.style)
    if segment.href:
        style += Style(link=segment.href, underline=True)
    return Text(segment.text, style=style)


def entry_text(entry: LogEntry) -> Text:
    return Text.assemble(*(segment_text(segment) for segment in entry.segments))


class LogRenderer:
    """Prints log entries as they are appended to the session.

    Streamed entries (those with a correlation id) are printed piecewise on
    one line as their segments arrive. The open stream line is ended before
    anything else is printed.
    """

    def __init__(self, console: Console) -> None:
        self._console = console
        self._seen = 0
        self._streamed: dict[str, int] = {}  # correlation id -> segments printed
        self._open_stream: str | None = None

    def __call__(self, state: SessionState) -> None:
        for entry in state.logs[: self._seen]:
            if entry.correlation_id is not None:
                self._continue_stream(entry)
        for entry in state.logs[self._seen :]:
            if entry.correlation_id is not None:
                self._continue_stream(entry)
            else:
                self._end_stream()
                self._console.print(entry_text(entry), soft_wrap=True)
        self._seen = len(state.logs)

    def _continue_stream(self, entry: LogEntry) -> None:
        correlation_id = entry.correlation_id
        assert correlation_id is not None
        printed = self._streamed.get(correlation_id, 0)
        if printed == len(entry.segments):
            return
        if self._open_stream != correlation_id:
            self._end_stream()
            if printed:
                # Resuming a stream that was interrupted by other lines
                self._console.print("... ", style="dim", end="")
        new = Text.assemble(*(segment_text(s) for s in entry.segments[printed:]))
        self._console.print(new, end="", soft_wrap=True)
        self._streamed[correlation_id] = len(entry.segments)
        self._open_stream = correlation_id

    def _end_stream(self) -> None:
        if self._open_stream is not None:
            self._console.print()
            self._open_stream = None

    def flush(self) -> None:
        self._end_stream()
