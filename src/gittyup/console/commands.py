"""Slash command handlers for the room console."""

from __future__ import annotations

import shlex
from typing import TYPE_CHECKING

from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from gittyup.console.render import rich_style
from gittyup.session.state import ConnectionPhase
from gittyup.transport.addressing import build_share_query

if TYPE_CHECKING:
    from gittyup.sandbox.pipeline import ProvisioningPipeline
    from gittyup.session.store import SessionStore
    from gittyup.transport.controller import ConnectionController


class QuitRequested(Exception):
    """Raised by /quit to end the console loop."""


class CommandHandler:
    """Handles slash commands typed into the room console."""

    def __init__(
        self,
        console: Console,
        store: SessionStore,
        controller: ConnectionController,
        pipeline: ProvisioningPipeline | None = None,
    ) -> None:
        self.console = console
        self.store = store
        self.controller = controller
        self.pipeline = pipeline

    async def handle(self, line: str) -> None:
        """Handle a slash command.

        Raises:
            QuitRequested: On /quit.
        """
        try:
            parts = shlex.split(line)
        except ValueError as e:
            self.console.print(f"[red]{e}[/red]")
            return
        if not parts:
            return

        cmd = parts[0].lower()
        args = parts[1:]

        handlers = {
            "/help": self._cmd_help,
            "/open": self._cmd_open,
            "/name": self._cmd_name,
            "/files": self._cmd_files,
            "/who": self._cmd_who,
            "/share": self._cmd_share,
            "/preview": self._cmd_preview,
            "/quit": self._cmd_quit,
        }

        handler = handlers.get(cmd)
        if handler:
            await handler(args)
        else:
            self.console.print(f"[red]Unknown command: {cmd}[/red]")
            self.console.print("Type [bold]/help[/bold] for available commands.")

    async def _cmd_help(self, args: list[str]) -> None:
        table = Table(title="Available Commands")
        table.add_column("Command", style="bold")
        table.add_column("Description")

        commands = [
            ("/help", "Show this help message"),
            ("/open <path>", "Open a file and show it to the room as your active file"),
            ("/name <name>", "Change your display name"),
            ("/files", "List repository files and who is looking at them"),
            ("/who", "List room participants"),
            ("/share", "Print a shareable link query for this room"),
            ("/preview", "Show the sandbox preview URL"),
            ("/quit", "Leave the room"),
        ]
        for cmd, desc in commands:
            table.add_row(cmd, desc)

        self.console.print(table)
        self.console.print("Anything else you type is sent as chat.")

    def _require_ready(self) -> bool:
        if self.store.state.phase is not ConnectionPhase.READY:
            self.console.print("[yellow]Not connected to a room.[/yellow]")
            return False
        return True

    async def _cmd_open(self, args: list[str]) -> None:
        if len(args) != 1:
            self.console.print("[red]Usage: /open <path>[/red]")
            return
        if not self._require_ready():
            return

        path = args[0]
        if path not in self.store.state.files:
            self.console.print(f"[red]No such file: {path}[/red]")
            return

        await self.controller.select_file(path)
        content = await self.controller.open_file(path)
        lexer = Syntax.guess_lexer(path, code=content)
        self.console.rule(path)
        self.console.print(Syntax(content, lexer, line_numbers=True))

    async def _cmd_name(self, args: list[str]) -> None:
        if not args:
            self.console.print("[red]Usage: /name <name>[/red]")
            return
        if not self._require_ready():
            return
        try:
            await self.controller.rename(" ".join(args))
        except ValueError as e:
            self.console.print(f"[red]{e}[/red]")

    async def _cmd_files(self, args: list[str]) -> None:
        if not self._require_ready():
            return
        state = self.store.state

        table = Table(title=f"Files at {state.commit_id}")
        table.add_column("", width=1)
        table.add_column("Path")
        table.add_column("Viewing")

        for path in state.files:
            marker = ">" if path == state.selected_file else ""
            viewers = Text(", ").join(
                Text(user.name, style=rich_style(state.color_for(user.id)))
                for user in state.files_by_active_user.get(path, ())
            )
            table.add_row(marker, path, viewers)

        self.console.print(table)

    async def _cmd_who(self, args: list[str]) -> None:
        if not self._require_ready():
            return
        state = self.store.state

        table = Table(title="Participants")
        table.add_column("Id", justify="right")
        table.add_column("Name")
        table.add_column("Active file")
        for user in state.roster.values():
            name = f"{user.name} (you)" if user.id == state.current_user_id else user.name
            table.add_row(str(user.id), name, user.active_file or "-")

        self.console.print(table)

    async def _cmd_share(self, args: list[str]) -> None:
        state = self.store.state
        if state.repository_url is None or state.current_user is None:
            self.console.print("[yellow]Not connected to a room.[/yellow]")
            return
        self.console.print(build_share_query(state.repository_url, state.current_user.name))

    async def _cmd_preview(self, args: list[str]) -> None:
        url = self.pipeline.preview_url if self.pipeline else None
        if url:
            self.console.print(f"Preview: [link={url}]{url}[/link]")
        else:
            self.console.print("[dim]No preview running.[/dim]")

    async def _cmd_quit(self, args: list[str]) -> None:
        raise QuitRequested
