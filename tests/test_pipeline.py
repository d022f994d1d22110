"""Tests for the sandbox provisioning pipeline."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import httpx
import pytest

from gittyup.config import SandboxConfig
from gittyup.files import FileContentCache, find_file
from gittyup.files.tree import FileTree
from gittyup.sandbox import ProvisioningPipeline, RunKey, SandboxError, run_key
from gittyup.session import (
    ConnectionPhase,
    ConsoleColor,
    Disconnect,
    ReplaceFileList,
    SessionStore,
    UserRecord,
    initialize,
)

FILES = {
    "package.json": '{"scripts": {"dev": "vite"}}',
    "vite.config.js": "export default {}",
    "index.html": "<h1>hi</h1>",
}


class FakeProcess:
    """Sandbox process whose output and exit code the test controls."""

    def __init__(self, command: str, exit_code: int, capture: bool) -> None:
        self.command = command
        self.exit_code = exit_code
        self.capture = capture
        self.killed = False
        self._queue: asyncio.Queue[str | None] = asyncio.Queue()

    def emit(self, chunk: str) -> None:
        self._queue.put_nowait(chunk)

    async def output(self):
        while True:
            chunk = await self._queue.get()
            if chunk is None:
                return
            yield chunk

    async def wait(self) -> int:
        return self.exit_code

    def kill(self) -> None:
        self.killed = True
        self._queue.put_nowait(None)


class FakeSandbox:
    """In-memory sandbox recording what the pipeline asks of it."""

    def __init__(
        self,
        exit_codes: dict[str, int] | None = None,
        holds: dict[str, asyncio.Event] | None = None,
    ) -> None:
        self.exit_codes = exit_codes or {}
        self.holds = holds or {}
        self.holding = asyncio.Event()
        self.mounted: FileTree | None = None
        self.spawned: list[FakeProcess] = []
        self.torn_down = False
        self.output_listeners: list[Callable[[str], None]] = []
        self.ready_listeners: list[Callable[[int, str], None]] = []

    async def mount(self, tree: FileTree) -> None:
        self.mounted = tree

    async def spawn(self, command, args=None, *, capture=False) -> FakeProcess:
        full_command = " ".join([command, *(args or [])])
        hold = self.holds.get(full_command)
        if hold is not None:
            self.holding.set()
            await hold.wait()
        process = FakeProcess(full_command, self.exit_codes.get(full_command, 0), capture)
        self.spawned.append(process)
        return process

    def on_output(self, listener):
        self.output_listeners.append(listener)
        return lambda: None

    def on_server_ready(self, listener):
        self.ready_listeners.append(listener)
        return lambda: None

    def say(self, chunk: str) -> None:
        for listener in list(self.output_listeners):
            listener(chunk)

    def announce(self, port: int, url: str) -> None:
        for listener in list(self.ready_listeners):
            listener(port, url)

    async def teardown(self) -> None:
        self.torn_down = True
        for process in self.spawned:
            process.kill()

    @property
    def commands(self) -> list[str]:
        return [process.command for process in self.spawned]


class Booter:
    """Boot function handing out FakeSandboxes, optionally held at a gate."""

    def __init__(
        self,
        exit_codes: dict[str, int] | None = None,
        holds: dict[str, asyncio.Event] | None = None,
    ) -> None:
        self.exit_codes = exit_codes
        self.holds = holds
        self.sandboxes: list[FakeSandbox] = []
        self.gate: asyncio.Event | None = None
        self.error: Exception | None = None

    async def __call__(self) -> FakeSandbox:
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        sandbox = FakeSandbox(self.exit_codes, self.holds)
        self.sandboxes.append(sandbox)
        return sandbox


async def settle() -> None:
    """Let background tasks run a few steps."""
    for _ in range(10):
        await asyncio.sleep(0)


def texts(store: SessionStore) -> list[str]:
    return [entry.text for entry in store.state.logs]


def welcome(store: SessionStore, files=tuple(FILES), commit: str = "c1") -> None:
    store.dispatch(
        initialize(
            current_user_id=7,
            users=[UserRecord(id=7, name="Bob")],
            files=files,
            repository_id="r1",
            commit_id=commit,
        )
    )


@pytest.fixture
async def cache():
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path.split("/", 5)[-1]
        if path not in FILES:
            return httpx.Response(404)
        return httpx.Response(200, text=FILES[path])

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    yield FileContentCache("http://rooms.test", client=client)
    await client.aclose()


@pytest.fixture
def booter() -> Booter:
    return Booter()


@pytest.fixture
async def pipeline(store: SessionStore, cache: FileContentCache, booter: Booter):
    pipeline = ProvisioningPipeline(store, cache, boot=booter)
    pipeline.attach()
    yield pipeline
    await pipeline.aclose()


class TestRunKey:
    def test_requires_ready_session_with_files(self, store: SessionStore) -> None:
        assert run_key(store.state) is None
        welcome(store, files=())
        assert run_key(store.state) is None

    def test_key(self, store: SessionStore) -> None:
        welcome(store, files=("a.js",))
        assert run_key(store.state) == RunKey("r1", "c1", ("a.js",))


class TestProvisioning:
    """A full run from welcome to preview."""

    @pytest.mark.asyncio
    async def test_install_then_dev_server(
        self, store: SessionStore, pipeline: ProvisioningPipeline, booter: Booter
    ) -> None:
        welcome(store)
        await pipeline.wait()

        sandbox = booter.sandboxes[0]
        assert pipeline.sandbox is sandbox
        assert sandbox.commands == ["npm install", "npm run dev"]
        assert sandbox.spawned[1].capture
        assert sandbox.mounted is not None
        assert find_file(sandbox.mounted, "index.html").contents == "<h1>hi</h1>"

        logs = texts(store)
        assert "Loading files and booting sandbox..." in logs
        assert any(line.startswith("Sandbox booted successfully (") for line in logs)
        assert any(line.startswith("Files loaded successfully (3 files, ") for line in logs)
        assert any(line.startswith("Files mounted successfully (") for line in logs)
        assert logs.index("Installing dependencies...") < logs.index(
            "Dependencies installed successfully"
        )
        assert logs[-1] == "Starting dev server..."
        assert store.state.phase is ConnectionPhase.READY

    @pytest.mark.asyncio
    async def test_dev_server_output_is_logged(
        self, store: SessionStore, pipeline: ProvisioningPipeline, booter: Booter
    ) -> None:
        welcome(store)
        await pipeline.wait()

        dev = booter.sandboxes[0].spawned[1]
        dev.emit("\x1b[32mVITE ready\x1b[0m in 120 ms")
        await settle()

        entry = store.state.logs[-1]
        assert entry.text == "VITE ready in 120 ms"
        assert "\x1b" not in entry.text
        assert entry.segments[-1].style == ConsoleColor.SANDBOX

    @pytest.mark.asyncio
    async def test_sandbox_output_is_logged(
        self, store: SessionStore, pipeline: ProvisioningPipeline, booter: Booter
    ) -> None:
        welcome(store)
        await pipeline.wait()

        booter.sandboxes[0].say("added 12 packages")
        assert store.state.logs[-1].text == "added 12 packages"
        assert store.state.logs[-1].segments[0].style == ConsoleColor.SANDBOX

    @pytest.mark.asyncio
    async def test_server_ready_publishes_preview(
        self, store: SessionStore, pipeline: ProvisioningPipeline, booter: Booter
    ) -> None:
        previews: list[str | None] = []
        pipeline.on_preview(previews.append)
        welcome(store)
        await pipeline.wait()

        booter.sandboxes[0].announce(5173, "http://localhost:5173/")

        assert pipeline.preview_url == "http://localhost:5173/"
        assert previews == ["http://localhost:5173/"]
        entry = store.state.logs[-1]
        assert entry.text == "Preview ready on port 5173: http://localhost:5173/"
        assert entry.segments[-1].href == "http://localhost:5173/"

    @pytest.mark.asyncio
    async def test_no_manifest_skips_install(
        self, store: SessionStore, pipeline: ProvisioningPipeline, booter: Booter
    ) -> None:
        welcome(store, files=("index.html",))
        await pipeline.wait()

        sandbox = booter.sandboxes[0]
        assert sandbox.commands == []
        assert find_file(sandbox.mounted, "index.html") is not None

    @pytest.mark.asyncio
    async def test_fetch_failure_becomes_placeholder(
        self, store: SessionStore, pipeline: ProvisioningPipeline, booter: Booter
    ) -> None:
        welcome(store, files=("index.html", "gone.js"))
        await pipeline.wait()

        gone = find_file(booter.sandboxes[0].mounted, "gone.js")
        assert gone is not None
        assert gone.contents == "// Error loading file: HTTP error! status: 404"
        assert any(line.startswith("Files mounted successfully") for line in texts(store))


class TestFailures:
    """Errors end the run with a log line; the session is unaffected."""

    @pytest.mark.asyncio
    async def test_install_failure(self, store: SessionStore, cache: FileContentCache) -> None:
        booter = Booter(exit_codes={"npm install": 1})
        pipeline = ProvisioningPipeline(store, cache, boot=booter)
        pipeline.attach()
        try:
            welcome(store)
            await pipeline.wait()

            assert booter.sandboxes[0].commands == ["npm install"]
            entry = store.state.logs[-1]
            assert entry.text == "Sandbox error: npm install failed with exit code 1"
            assert entry.segments[0].style == ConsoleColor.ERROR
            assert store.state.phase is ConnectionPhase.READY
        finally:
            await pipeline.aclose()

    @pytest.mark.asyncio
    async def test_boot_failure(
        self, store: SessionStore, pipeline: ProvisioningPipeline, booter: Booter
    ) -> None:
        booter.error = SandboxError("no space left")
        welcome(store)
        await pipeline.wait()

        assert texts(store)[-1] == "Sandbox error: no space left"
        assert pipeline.sandbox is None

    @pytest.mark.asyncio
    async def test_custom_commands(self, store: SessionStore, cache: FileContentCache) -> None:
        booter = Booter()
        config = SandboxConfig(
            install_command=["pnpm", "install"],
            dev_command=["pnpm", "dev"],
            dev_server_markers=["index.html"],
        )
        pipeline = ProvisioningPipeline(store, cache, boot=booter, config=config)
        pipeline.attach()
        try:
            welcome(store)
            await pipeline.wait()
            assert booter.sandboxes[0].commands == ["pnpm install", "pnpm dev"]
        finally:
            await pipeline.aclose()

    @pytest.mark.asyncio
    async def test_disabled(self, store: SessionStore, cache: FileContentCache) -> None:
        booter = Booter()
        pipeline = ProvisioningPipeline(store, cache, boot=booter, config=SandboxConfig(enabled=False))
        pipeline.attach()
        welcome(store)
        await settle()
        assert pipeline.run_task is None
        assert booter.sandboxes == []
        await pipeline.aclose()


class TestCancellation:
    """Superseded runs never touch the session."""

    @pytest.mark.asyncio
    async def test_disconnect_during_boot(
        self, store: SessionStore, pipeline: ProvisioningPipeline, booter: Booter
    ) -> None:
        booter.gate = asyncio.Event()
        welcome(store)
        first = pipeline.run_task
        assert first is not None
        await settle()

        store.dispatch(Disconnect())
        logs_after_disconnect = len(store.state.logs)

        booter.gate.set()
        await first
        await settle()

        sandbox = booter.sandboxes[0]
        assert sandbox.torn_down
        assert sandbox.mounted is None
        assert sandbox.spawned == []
        assert len(store.state.logs) == logs_after_disconnect
        assert pipeline.sandbox is None

    @pytest.mark.asyncio
    async def test_new_commit_replaces_run(
        self, store: SessionStore, pipeline: ProvisioningPipeline, booter: Booter
    ) -> None:
        previews: list[str | None] = []
        pipeline.on_preview(previews.append)
        welcome(store)
        await pipeline.wait()
        old = booter.sandboxes[0]
        old.announce(5173, "http://localhost:5173/")
        generation = pipeline.generation

        store.dispatch(ReplaceFileList(files=tuple(FILES), repository_id="r1", commit_id="c2"))
        await pipeline.wait()
        await settle()

        assert pipeline.generation > generation
        assert old.torn_down
        assert all(process.killed for process in old.spawned)
        assert len(booter.sandboxes) == 2
        assert pipeline.sandbox is booter.sandboxes[1]
        assert previews == ["http://localhost:5173/", None]

        # Late output from the old sandbox is dropped
        before = len(store.state.logs)
        old.say("stale output")
        old.announce(4000, "http://localhost:4000/")
        assert len(store.state.logs) == before
        assert pipeline.preview_url is None

    @pytest.mark.asyncio
    async def test_dev_server_started_after_replacement_is_killed(
        self, store: SessionStore, cache: FileContentCache
    ) -> None:
        release = asyncio.Event()
        booter = Booter(holds={"npm run dev": release})
        pipeline = ProvisioningPipeline(store, cache, boot=booter)
        pipeline.attach()
        try:
            welcome(store)
            old_run = pipeline.run_task
            assert old_run is not None

            async def dev_server_starting() -> None:
                while not (booter.sandboxes and booter.sandboxes[0].holding.is_set()):
                    await asyncio.sleep(0)

            await asyncio.wait_for(dev_server_starting(), timeout=5.0)
            old = booter.sandboxes[0]

            store.dispatch(ReplaceFileList(files=tuple(FILES), repository_id="r1", commit_id="c2"))
            release.set()
            await old_run
            await pipeline.wait()
            await settle()

            assert old.torn_down
            dev = old.spawned[-1]
            assert dev.command == "npm run dev"
            assert dev.killed

            before = len(store.state.logs)
            dev.emit("stale dev output")
            await settle()
            assert len(store.state.logs) == before
        finally:
            await pipeline.aclose()

    @pytest.mark.asyncio
    async def test_unrelated_changes_keep_run(
        self, store: SessionStore, pipeline: ProvisioningPipeline, booter: Booter
    ) -> None:
        welcome(store)
        await pipeline.wait()
        task = pipeline.run_task

        store.dispatch(ReplaceFileList(files=tuple(FILES), repository_id="r1", commit_id="c1"))
        assert pipeline.run_task is task
        assert len(booter.sandboxes) == 1

    @pytest.mark.asyncio
    async def test_aclose_tears_down(
        self, store: SessionStore, cache: FileContentCache, booter: Booter
    ) -> None:
        pipeline = ProvisioningPipeline(store, cache, boot=booter)
        pipeline.attach()
        welcome(store)
        await pipeline.wait()

        await pipeline.aclose()

        assert booter.sandboxes[0].torn_down
        assert pipeline.sandbox is None
        # Detached: further changes start nothing
        store.dispatch(ReplaceFileList(files=("x.js",), repository_id="r1", commit_id="c9"))
        assert pipeline.run_task is None
