"""Sandbox backed by a temporary directory and asyncio subprocesses."""

from __future__ import annotations

import asyncio
import codecs
import os
import re
import shutil
import signal
import tempfile
import time
from collections.abc import AsyncIterator, Callable
from pathlib import Path

from gittyup.files.tree import FileTree, count_files, write_tree
from gittyup.logging import get_logger
from gittyup.sandbox.protocol import OutputListener, SandboxError, ServerReadyListener

log = get_logger("sandbox")

_ANSI_CSI_RE = re.compile(r"\x1b\[[0-9;?]*[ -/]*[@-~]")
_SERVER_URL_RE = re.compile(
    r"https?://(?:localhost|127\.0\.0\.1|0\.0\.0\.0|\[::1\]):(?P<port>\d{2,5})[^\s]*"
)
_READ_SIZE = 4096


def find_server_url(text: str) -> tuple[int, str] | None:
    """Find the first local server URL in process output.

    Color codes are stripped first; dev servers like to color the port.
    """
    match = _SERVER_URL_RE.search(_ANSI_CSI_RE.sub("", text))
    if match is None:
        return None
    return int(match.group("port")), match.group(0)


class LocalProcess:
    """A subprocess running inside a LocalSandbox."""

    def __init__(
        self,
        command: str,
        process: asyncio.subprocess.Process,
        capture: bool,
    ) -> None:
        self.command = command
        self._process = process
        self._capture = capture
        self._queue: asyncio.Queue[str | None] = asyncio.Queue()
        self.pump: asyncio.Task[None] | None = None

    @property
    def captured(self) -> bool:
        return self._capture

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    async def output(self) -> AsyncIterator[str]:
        if not self._capture:
            raise SandboxError(f"Output of {self.command!r} is not captured")
        while True:
            chunk = await self._queue.get()
            if chunk is None:
                return
            yield chunk

    def feed(self, chunk: str | None) -> None:
        self._queue.put_nowait(chunk)

    async def wait(self) -> int:
        return await self._process.wait()

    def kill(self) -> None:
        if self._process.returncode is None:
            try:
                if os.name == "posix":
                    # npm scripts fork; take the whole process group down
                    os.killpg(self._process.pid, signal.SIGKILL)
                else:
                    self._process.kill()
            except ProcessLookupError:
                pass  # Already gone


class LocalSandbox:
    """Runs a project in a scratch directory on this machine.

    Example:
        sandbox = await LocalSandbox.boot()
        await sandbox.mount(tree)
        install = await sandbox.spawn("npm", ["install"])
        exit_code = await install.wait()
        await sandbox.teardown()
    """

    def __init__(self, root: Path) -> None:
        self.root = root
        self._processes: list[LocalProcess] = []
        self._output_listeners: list[OutputListener] = []
        self._ready_listeners: list[ServerReadyListener] = []
        self._ready_ports: set[int] = set()
        self._torn_down = False

    @classmethod
    async def boot(cls, workdir: str | None = None) -> LocalSandbox:
        """Create a sandbox in a fresh temporary directory.

        Args:
            workdir: Parent directory for the sandbox root. None uses the
                system temp dir.

        Raises:
            SandboxError: If the directory cannot be created.
        """
        try:
            root = await asyncio.to_thread(tempfile.mkdtemp, prefix="gittyup-", dir=workdir)
        except OSError as e:
            raise SandboxError(f"Could not create sandbox directory: {e}") from e
        log.debug("Sandbox booted at %s", root)
        return cls(Path(root))

    async def mount(self, tree: FileTree) -> None:
        self._check_alive()
        try:
            written = await asyncio.to_thread(write_tree, tree, self.root)
        except OSError as e:
            raise SandboxError(f"Mount failed: {e}") from e
        log.debug("Mounted %d/%d files into %s", written, count_files(tree), self.root)

    async def spawn(
        self,
        command: str,
        args: list[str] | None = None,
        *,
        capture: bool = False,
    ) -> LocalProcess:
        self._check_alive()

        cmd_list = [command, *(args or [])]
        full_command = " ".join(cmd_list)

        process_env = os.environ.copy()
        # Keep dev servers from trying to open a browser window
        process_env.setdefault("BROWSER", "none")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd_list,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,  # Merge stderr into stdout
                stdin=asyncio.subprocess.DEVNULL,
                cwd=self.root,
                env=process_env,
                start_new_session=os.name == "posix",
            )
        except FileNotFoundError as e:
            raise SandboxError(f"Command not found: {command}") from e
        except PermissionError as e:
            raise SandboxError(f"Permission denied: {command}") from e
        except OSError as e:
            raise SandboxError(f"OS error starting {command}: {e}") from e

        handle = LocalProcess(full_command, process, capture)
        if self._torn_down:
            # Torn down while the exec was in flight; nothing will reap it later
            handle.kill()
            await process.wait()
            raise SandboxError(f"Sandbox was torn down while starting {command}")
        handle.pump = asyncio.create_task(self._pump(handle, process))
        self._processes.append(handle)
        log.debug("Spawned %s (pid %d)", full_command, process.pid)
        return handle

    async def _pump(self, handle: LocalProcess, process: asyncio.subprocess.Process) -> None:
        """Forward process output until EOF, watching for server URLs."""
        assert process.stdout is not None
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        started = time.perf_counter()
        try:
            while True:
                data = await process.stdout.read(_READ_SIZE)
                if not data:
                    break
                chunk = decoder.decode(data)
                if chunk:
                    self._deliver(handle, chunk)
            tail = decoder.decode(b"", final=True)
            if tail:
                self._deliver(handle, tail)
        finally:
            handle.feed(None)
            log.debug(
                "%s closed its output after %.0fms", handle.command,
                (time.perf_counter() - started) * 1000,
            )

    def _deliver(self, handle: LocalProcess, chunk: str) -> None:
        if handle.captured:
            handle.feed(chunk)
        else:
            self._emit_output(chunk)

        found = find_server_url(chunk)
        if found is not None:
            port, url = found
            if port not in self._ready_ports:
                self._ready_ports.add(port)
                log.info("Server ready on port %d: %s", port, url)
                for listener in list(self._ready_listeners):
                    listener(port, url)

    def _emit_output(self, chunk: str) -> None:
        for listener in list(self._output_listeners):
            listener(chunk)

    def on_output(self, listener: OutputListener) -> Callable[[], None]:
        self._output_listeners.append(listener)
        return lambda: self._discard(self._output_listeners, listener)

    def on_server_ready(self, listener: ServerReadyListener) -> Callable[[], None]:
        self._ready_listeners.append(listener)
        return lambda: self._discard(self._ready_listeners, listener)

    @staticmethod
    def _discard(listeners: list, listener: object) -> None:
        if listener in listeners:
            listeners.remove(listener)

    def _check_alive(self) -> None:
        if self._torn_down:
            raise SandboxError("Sandbox has been torn down")

    async def teardown(self) -> None:
        if self._torn_down:
            return
        self._torn_down = True
        self._output_listeners.clear()
        self._ready_listeners.clear()

        for handle in self._processes:
            handle.kill()
        for handle in self._processes:
            try:
                await asyncio.wait_for(handle.wait(), timeout=5.0)
            except asyncio.TimeoutError:
                log.warning("%s did not exit after kill", handle.command)
            if handle.pump is not None and not handle.pump.done():
                handle.pump.cancel()
        self._processes.clear()

        await asyncio.to_thread(shutil.rmtree, self.root, True)
        log.debug("Sandbox at %s removed", self.root)
