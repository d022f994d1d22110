"""Tests for the terminal frontend: rendering, slash commands and the CLI."""

from __future__ import annotations

import io

import pytest
from rich.console import Console
from rich.style import Style

from gittyup.cli import create_parser, resolve_room
from gittyup.config import Config, UserConfig
from gittyup.console import CommandHandler, LogRenderer, QuitRequested, rich_style
from gittyup.session import (
    AppendLog,
    BeginConnect,
    ConsoleColor,
    Segment,
    SessionStore,
    StreamDelta,
    UpdateUserMetadata,
    UserRecord,
    initialize,
    log,
)


def plain_console() -> tuple[Console, io.StringIO]:
    buffer = io.StringIO()
    return Console(file=buffer, width=100, color_system=None, force_terminal=False), buffer


class FakeController:
    """Records the intents a command asks for."""

    def __init__(self) -> None:
        self.selected: list[str] = []
        self.renamed: list[str] = []

    async def select_file(self, path: str) -> bool:
        self.selected.append(path)
        return True

    async def open_file(self, path: str) -> str:
        return f"// contents of {path}"

    async def rename(self, name: str) -> bool:
        if name == "!":
            raise ValueError("Name must be between 2 and 50 characters")
        self.renamed.append(name)
        return True


class TestRichStyle:
    def test_console_color_classes(self) -> None:
        assert rich_style(ConsoleColor.ERROR) == Style(color="red")
        assert rich_style(ConsoleColor.SOCKET) == Style(color="green")
        assert rich_style(ConsoleColor.SANDBOX) == Style()

    def test_rich_style_strings_pass_through(self) -> None:
        assert rich_style("bold green") == Style.parse("bold green")

    def test_garbage_is_unstyled(self) -> None:
        assert rich_style("not-a-style at all") == Style()


class TestLogRenderer:
    def test_prints_new_entries(self, store: SessionStore) -> None:
        console, buffer = plain_console()
        store.subscribe(LogRenderer(console))

        store.dispatch(log("first"))
        store.dispatch(AppendLog(segments=(Segment("see "), Segment("here", href="http://x"))))

        assert buffer.getvalue() == "first\nsee here\n"

    def test_streams_on_one_line(self, store: SessionStore) -> None:
        console, buffer = plain_console()
        store.subscribe(LogRenderer(console))

        store.dispatch(log("a"))
        store.dispatch(StreamDelta(correlation_id="m1", text="Hel"))
        store.dispatch(StreamDelta(correlation_id="m1", text="lo"))
        store.dispatch(log("b"))

        assert buffer.getvalue() == "a\nHello\nb\n"

    def test_interrupted_stream_resumes(self, store: SessionStore) -> None:
        console, buffer = plain_console()
        renderer = LogRenderer(console)
        store.subscribe(renderer)

        store.dispatch(StreamDelta(correlation_id="m1", text="one"))
        store.dispatch(log("x"))
        store.dispatch(StreamDelta(correlation_id="m1", text="two"))
        renderer.flush()

        assert buffer.getvalue() == "one\nx\n... two\n"


@pytest.fixture
def room_store() -> SessionStore:
    store = SessionStore()
    store.dispatch(BeginConnect(url="github.com/a/b"))
    store.dispatch(
        initialize(
            current_user_id=7,
            users=[UserRecord(7, "Bob"), UserRecord(3, "Ann")],
            files=["a.js", "package.json"],
            repository_id="r1",
            commit_id="c1",
        )
    )
    store.dispatch(UpdateUserMetadata(id=3, fields={"active_file": "a.js"}))
    return store


class TestCommandHandler:
    def make(self, store: SessionStore) -> tuple[CommandHandler, FakeController, io.StringIO]:
        console, buffer = plain_console()
        controller = FakeController()
        return CommandHandler(console, store, controller), controller, buffer  # type: ignore[arg-type]

    @pytest.mark.asyncio
    async def test_open(self, room_store: SessionStore) -> None:
        handler, controller, buffer = self.make(room_store)
        await handler.handle("/open a.js")

        assert controller.selected == ["a.js"]
        assert "contents of a.js" in buffer.getvalue()

    @pytest.mark.asyncio
    async def test_open_unknown_file(self, room_store: SessionStore) -> None:
        handler, controller, buffer = self.make(room_store)
        await handler.handle("/open nope.js")

        assert controller.selected == []
        assert "No such file: nope.js" in buffer.getvalue()

    @pytest.mark.asyncio
    async def test_files_shows_presence(self, room_store: SessionStore) -> None:
        handler, _, buffer = self.make(room_store)
        await handler.handle("/files")

        row = next(line for line in buffer.getvalue().splitlines() if "a.js" in line)
        assert "Ann" in row

    @pytest.mark.asyncio
    async def test_name(self, room_store: SessionStore) -> None:
        handler, controller, buffer = self.make(room_store)
        await handler.handle("/name Robert Smith")
        await handler.handle("/name !")

        assert controller.renamed == ["Robert Smith"]
        assert "Name must be between" in buffer.getvalue()

    @pytest.mark.asyncio
    async def test_share(self, room_store: SessionStore) -> None:
        handler, _, buffer = self.make(room_store)
        await handler.handle("/share")
        assert "?repo=github.com%2Fa%2Fb&name=Bob" in buffer.getvalue()

    @pytest.mark.asyncio
    async def test_not_connected(self, store: SessionStore) -> None:
        handler, _, buffer = self.make(store)
        await handler.handle("/files")
        assert "Not connected" in buffer.getvalue()

    @pytest.mark.asyncio
    async def test_unknown_and_quit(self, room_store: SessionStore) -> None:
        handler, _, buffer = self.make(room_store)
        await handler.handle("/dance")
        assert "Unknown command: /dance" in buffer.getvalue()

        with pytest.raises(QuitRequested):
            await handler.handle("/quit")


class TestCli:
    def test_defaults(self) -> None:
        parsed = create_parser().parse_args([])
        assert resolve_room(parsed, Config()) == ("github.com/blixt/chrome-ai-game", "Bob")

    def test_config_user_defaults(self) -> None:
        parsed = create_parser().parse_args([])
        config = Config(user=UserConfig(display_name="Ann", repository="github.com/x/y"))
        assert resolve_room(parsed, config) == ("github.com/x/y", "Ann")

    def test_link_and_flags(self) -> None:
        link = "https://gittyup.example.com/?repo=github.com/a/b&name=Cy"
        parsed = create_parser().parse_args(["--link", link])
        assert resolve_room(parsed, Config()) == ("github.com/a/b", "Cy")

        parsed = create_parser().parse_args(["--link", link, "--name", "Dee"])
        assert resolve_room(parsed, Config()) == ("github.com/a/b", "Dee")

    def test_verbosity_counts(self) -> None:
        parsed = create_parser().parse_args(["-vv", "--server", "http://x"])
        assert parsed.verbose == 2
        assert parsed.server == "http://x"
