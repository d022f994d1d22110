"""Sandbox provisioning pipeline.

Watches the session store and, whenever the session is ready with a
repository, a commit, and a non-empty file list, turns that file list into
a running preview:

1. Build the file tree (through the content cache) and boot a sandbox,
   concurrently. Sandbox output is attached to the session log.
2. Join both. A run that was superseded meanwhile stops here silently.
3. Mount the tree, then log how long boot, tree build and mount took.
4. If a dependency manifest is present, run the install command and await
   its exit code. Non-zero ends this run with an error line.
5. If a dev-server config is present, start the dev server without awaiting
   it and pipe its ANSI output into the log.
6. When the sandbox reports a server URL, publish it as ``preview_url``.

Any change to the phase, repository, commit or file list tears the current
run down and, if the conditions still hold, starts a new one. Cancellation
is cooperative: each run captures a generation number and checks it after
every await. A stale run may finish its in-flight operation but never
touches the session again.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from functools import partial
from typing import TYPE_CHECKING, TypeVar

from gittyup.config.schema import SandboxConfig
from gittyup.files.tree import FileTree, build_file_tree, count_files
from gittyup.logging import get_logger
from gittyup.sandbox.local import LocalSandbox
from gittyup.sandbox.protocol import BootFunction, Sandbox, SandboxProcess
from gittyup.session.actions import Action, AppendLog, log, log_from_ansi
from gittyup.session.state import ConnectionPhase, ConsoleColor, Segment, SessionState

if TYPE_CHECKING:
    from gittyup.files.cache import FileContentCache
    from gittyup.session.store import SessionStore

T = TypeVar("T")

_log = get_logger("sandbox")

PreviewListener = Callable[[str | None], None]


class InstallFailedError(Exception):
    """The dependency install step exited with a non-zero code."""

    def __init__(self, command: str, exit_code: int) -> None:
        super().__init__(f"{command} failed with exit code {exit_code}")
        self.command = command
        self.exit_code = exit_code


@dataclass(frozen=True)
class RunKey:
    """The slice of session state a provisioning run depends on."""

    repository_id: str
    commit_id: str
    files: tuple[str, ...]


def run_key(state: SessionState) -> RunKey | None:
    """Return the key for ``state``, or None if no run should exist."""
    if state.phase is not ConnectionPhase.READY:
        return None
    if not state.repository_id or not state.commit_id or not state.files:
        return None
    return RunKey(state.repository_id, state.commit_id, state.files)


async def _timed(awaitable: Awaitable[T]) -> tuple[T, float]:
    started = time.perf_counter()
    result = await awaitable
    return result, (time.perf_counter() - started) * 1000


class ProvisioningPipeline:
    """Keeps one sandbox run in step with the session.

    Example:
        pipeline = ProvisioningPipeline(store, cache)
        pipeline.on_preview(lambda url: print("preview:", url))
        pipeline.attach()
        ...
        await pipeline.aclose()
    """

    def __init__(
        self,
        store: SessionStore,
        cache: FileContentCache,
        boot: BootFunction | None = None,
        config: SandboxConfig | None = None,
    ) -> None:
        self._store = store
        self._cache = cache
        self._config = config or SandboxConfig()
        self._boot = boot or partial(LocalSandbox.boot, self._config.workdir)

        self._generation = 0
        self._key: RunKey | None = None
        self._run_task: asyncio.Task[None] | None = None
        self._sandbox: Sandbox | None = None
        self._runs: set[asyncio.Task[None]] = set()
        self._pumps: set[asyncio.Task[None]] = set()
        self._disposals: set[asyncio.Task[None]] = set()

        self._unsubscribe: Callable[[], None] | None = None
        self._preview_listeners: list[PreviewListener] = []
        self.preview_url: str | None = None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def sandbox(self) -> Sandbox | None:
        return self._sandbox

    @property
    def run_task(self) -> asyncio.Task[None] | None:
        return self._run_task

    def attach(self) -> None:
        """Start following the store."""
        if self._unsubscribe is None:
            self._unsubscribe = self._store.subscribe(self.evaluate)
            self.evaluate(self._store.state)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def on_preview(self, listener: PreviewListener) -> Callable[[], None]:
        """Subscribe to preview URL changes; None means the preview is gone."""
        self._preview_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._preview_listeners:
                self._preview_listeners.remove(listener)

        return unsubscribe

    def evaluate(self, state: SessionState) -> None:
        """Start, restart or stop the run to match ``state``."""
        if not self._config.enabled:
            return
        key = run_key(state)
        if key == self._key:
            return
        self._key = key
        self.teardown()
        if key is not None:
            self._start(key)

    def _start(self, key: RunKey) -> None:
        generation = self._generation
        _log.info(
            "Provisioning %s@%s (%d files, generation %d)",
            key.repository_id, key.commit_id, len(key.files), generation,
        )
        self._run_task = self._track(self._runs, self._run(generation, key))

    def teardown(self) -> None:
        """Invalidate the current run and release its sandbox."""
        self._generation += 1
        self._run_task = None

        sandbox, self._sandbox = self._sandbox, None
        if sandbox is not None:
            self._track(self._disposals, self._dispose(sandbox))

        for pump in list(self._pumps):
            pump.cancel()

        if self.preview_url is not None:
            self._set_preview(None)

    @staticmethod
    def _track(tasks: set[asyncio.Task[None]], coro: Awaitable[None]) -> asyncio.Task[None]:
        task = asyncio.ensure_future(coro)
        tasks.add(task)
        task.add_done_callback(tasks.discard)
        return task

    async def _dispose(self, sandbox: Sandbox) -> None:
        try:
            await sandbox.teardown()
        except Exception:
            _log.exception("Sandbox teardown failed")

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    def _emit(self, generation: int, action: Action) -> None:
        if self._is_current(generation):
            self._store.dispatch(action)

    def _info(self, generation: int, message: str) -> None:
        self._emit(generation, log(message, ConsoleColor.SANDBOX))

    async def _boot_and_attach(self, generation: int) -> Sandbox:
        sandbox = await self._boot()
        sandbox.on_output(lambda chunk: self._info(generation, chunk))
        sandbox.on_server_ready(partial(self._server_ready, generation))
        return sandbox

    async def _run(self, generation: int, key: RunKey) -> None:
        sandbox: Sandbox | None = None
        try:
            self._info(generation, "Loading files and booting sandbox...")

            tree_result, boot_result = await asyncio.gather(
                _timed(build_file_tree(self._cache, key.repository_id, key.commit_id, key.files)),
                _timed(self._boot_and_attach(generation)),
                return_exceptions=True,
            )

            if not isinstance(boot_result, BaseException):
                sandbox = boot_result[0]

            if not self._is_current(generation):
                _log.debug("Run %d superseded during boot, discarding", generation)
                if sandbox is not None:
                    await self._dispose(sandbox)
                return

            if isinstance(boot_result, BaseException):
                raise boot_result
            if isinstance(tree_result, BaseException):
                await self._dispose(sandbox)
                sandbox = None
                raise tree_result

            self._sandbox = sandbox
            tree, tree_ms = tree_result
            boot_ms = boot_result[1]
            self._info(generation, f"Sandbox booted successfully ({boot_ms:.0f}ms)")
            self._info(
                generation, f"Files loaded successfully ({count_files(tree)} files, {tree_ms:.0f}ms)"
            )

            await self._mount(generation, sandbox, tree)
            if not self._is_current(generation):
                return

            if self._has_marker(key.files, self._config.manifest_markers):
                await self._install(generation, sandbox)
                if not self._is_current(generation):
                    return

            if self._has_marker(key.files, self._config.dev_server_markers):
                await self._start_dev_server(generation, sandbox)

        except Exception as e:
            if not self._is_current(generation):
                return
            _log.warning("Sandbox run %d failed: %s", generation, e)
            self._emit(generation, log(f"Sandbox error: {e}", ConsoleColor.ERROR))

    async def _mount(self, generation: int, sandbox: Sandbox, tree: FileTree) -> None:
        self._info(generation, "Mounting files...")
        _, mount_ms = await _timed(sandbox.mount(tree))
        self._info(generation, f"Files mounted successfully ({mount_ms:.0f}ms)")

    async def _install(self, generation: int, sandbox: Sandbox) -> None:
        command, *args = self._config.install_command
        full_command = " ".join(self._config.install_command)
        self._info(generation, "Installing dependencies...")
        process = await sandbox.spawn(command, args)
        exit_code = await process.wait()
        if not self._is_current(generation):
            return
        if exit_code != 0:
            raise InstallFailedError(full_command, exit_code)
        self._info(generation, "Dependencies installed successfully")

    async def _start_dev_server(self, generation: int, sandbox: Sandbox) -> None:
        command, *args = self._config.dev_command
        self._info(generation, "Starting dev server...")
        process = await sandbox.spawn(command, args, capture=True)
        if not self._is_current(generation):
            process.kill()
            return
        # Runs for as long as the dev server does; never awaited by the run
        self._track(self._pumps, self._pipe_output(generation, process))

    async def _pipe_output(self, generation: int, process: SandboxProcess) -> None:
        async for chunk in process.output():
            if not self._is_current(generation):
                return
            self._emit(generation, log_from_ansi(chunk))
        if self._is_current(generation):
            _log.info("%s exited", process.command)

    def _server_ready(self, generation: int, port: int, url: str) -> None:
        if not self._is_current(generation):
            return
        self._emit(
            generation,
            AppendLog(
                segments=(
                    Segment(text=f"Preview ready on port {port}: ", style=ConsoleColor.SANDBOX),
                    Segment(text=url, style=ConsoleColor.SANDBOX, href=url),
                )
            ),
        )
        self._set_preview(url)

    def _set_preview(self, url: str | None) -> None:
        self.preview_url = url
        for listener in list(self._preview_listeners):
            try:
                listener(url)
            except Exception:
                _log.exception("Preview listener failed")

    @staticmethod
    def _has_marker(files: tuple[str, ...], markers: list[str]) -> bool:
        return any(marker in files for marker in markers)

    async def wait(self) -> None:
        """Wait for the current run's sequential part to finish (tests, CLI)."""
        if self._run_task is not None:
            await asyncio.shield(self._run_task)

    async def aclose(self) -> None:
        """Stop following the store, tear down, and wait for cleanup."""
        self.detach()
        self._key = None
        self.teardown()

        # Stale runs may be parked on a boot or install that never returns
        stale = [task for task in (*self._runs, *self._pumps) if not task.done()]
        for task in stale:
            task.cancel()
        pending = stale + [task for task in self._disposals if not task.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
