"""Interactive room console."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from prompt_toolkit import PromptSession
from prompt_toolkit.patch_stdout import patch_stdout
from rich.console import Console

from gittyup.console.commands import CommandHandler, QuitRequested
from gittyup.console.render import LogRenderer
from gittyup.files.cache import FileContentCache
from gittyup.logging import get_logger
from gittyup.sandbox.pipeline import ProvisioningPipeline
from gittyup.session.reducer import SessionIntegrityError
from gittyup.session.store import SessionStore
from gittyup.transport.controller import ConnectionController

if TYPE_CHECKING:
    from gittyup.config.schema import Config

log = get_logger("console")

console = Console()


class RoomConsole:
    """Prompt loop for one room: chat lines and slash commands."""

    def __init__(
        self,
        store: SessionStore,
        controller: ConnectionController,
        pipeline: ProvisioningPipeline | None = None,
    ) -> None:
        self.store = store
        self.controller = controller
        self.pipeline = pipeline
        self.renderer = LogRenderer(console)
        self.commands = CommandHandler(console, store, controller, pipeline)
        self.session: PromptSession[str] = PromptSession()

    async def run(self, repository: str, name: str) -> int:
        """Connect, then read input until /quit, EOF, or the room closes."""
        unsubscribe = self.store.subscribe(self.renderer)
        if self.pipeline is not None:
            self.pipeline.attach()

        console.print("[bold]GittyUp[/bold] v0.1.0")
        console.print("Type [bold]/help[/bold] for commands, [bold]/quit[/bold] to exit.\n")

        try:
            with patch_stdout():
                await self.controller.connect(repository, name)
                if not self.controller.connected:
                    return 1
                return await self._loop()
        finally:
            unsubscribe()
            self.renderer.flush()

    async def _loop(self) -> int:
        prompt = asyncio.ensure_future(self.session.prompt_async("> "))
        closed = asyncio.ensure_future(self.controller.wait_closed())
        try:
            while True:
                done, _ = await asyncio.wait(
                    {prompt, closed}, return_when=asyncio.FIRST_COMPLETED
                )
                if closed in done:
                    # Surfaces SessionIntegrityError
                    closed.result()
                    return 0

                try:
                    line = prompt.result()
                except (EOFError, KeyboardInterrupt):
                    return 0

                try:
                    await self._handle(line)
                except QuitRequested:
                    return 0
                prompt = asyncio.ensure_future(self.session.prompt_async("> "))
        except SessionIntegrityError as e:
            log.error("Room closed: %s", e)
            return 2
        finally:
            for task in (prompt, closed):
                if not task.done():
                    task.cancel()
            await self.controller.disconnect()

    async def _handle(self, line: str) -> None:
        line = line.strip()
        if not line:
            return
        if line.startswith("/"):
            await self.commands.handle(line)
        else:
            await self.controller.send_chat(line)


async def run_room(config: Config, repository: str, name: str) -> int:
    """Wire up a session for ``repository`` and run the console until it ends."""
    store = SessionStore()
    cache = FileContentCache(config.server.url, timeout=config.server.fetch_timeout)
    controller = ConnectionController(store, cache, config.server)
    pipeline = ProvisioningPipeline(store, cache, config=config.sandbox)

    try:
        return await RoomConsole(store, controller, pipeline).run(repository, name)
    finally:
        await pipeline.aclose()
        await cache.aclose()
