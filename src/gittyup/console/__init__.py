"""Terminal frontend for a room."""

from gittyup.console.commands import CommandHandler, QuitRequested
from gittyup.console.render import LogRenderer, entry_text, rich_style
from gittyup.console.repl import RoomConsole, run_room

__all__ = [
    "CommandHandler",
    "LogRenderer",
    "QuitRequested",
    "RoomConsole",
    "entry_text",
    "rich_style",
    "run_room",
]
