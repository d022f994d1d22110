"""Sandbox protocol for running a mounted project."""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Protocol

from gittyup.files.tree import FileTree

OutputListener = Callable[[str], None]
ServerReadyListener = Callable[[int, str], None]


class SandboxError(Exception):
    """Booting, mounting into, or spawning inside a sandbox failed."""


class SandboxProcess(Protocol):
    """A process started inside a sandbox."""

    command: str

    def output(self) -> AsyncIterator[str]:
        """Iterate decoded output chunks until the process closes its output.

        Only available for processes spawned with ``capture=True``.
        """
        ...

    async def wait(self) -> int:
        """Wait for the process to exit and return its exit code."""
        ...

    def kill(self) -> None: ...


class Sandbox(Protocol):
    """An isolated place to mount a file tree and run processes against it.

    Implementations:
    - LocalSandbox: temporary directory plus local subprocesses
    """

    async def mount(self, tree: FileTree) -> None:
        """Write ``tree`` into the sandbox root."""
        ...

    async def spawn(
        self,
        command: str,
        args: list[str] | None = None,
        *,
        capture: bool = False,
    ) -> SandboxProcess:
        """Start ``command`` in the sandbox root.

        Args:
            command: Executable to run (e.g. "npm").
            args: Arguments (e.g. ["run", "dev"]).
            capture: If True, output is delivered through the returned
                process's ``output()``. Otherwise it goes to the sandbox's
                output listeners.
        """
        ...

    def on_output(self, listener: OutputListener) -> Callable[[], None]:
        """Subscribe to sandbox-level output; returns an unsubscribe function."""
        ...

    def on_server_ready(self, listener: ServerReadyListener) -> Callable[[], None]:
        """Subscribe to ``(port, url)`` notifications for servers that come up."""
        ...

    async def teardown(self) -> None:
        """Stop all processes and release the sandbox."""
        ...


BootFunction = Callable[[], Awaitable[Sandbox]]
