"""Sandboxed preview: where a room's files are mounted, installed and served."""

from gittyup.sandbox.local import LocalProcess, LocalSandbox, find_server_url
from gittyup.sandbox.pipeline import InstallFailedError, ProvisioningPipeline, RunKey, run_key
from gittyup.sandbox.protocol import BootFunction, Sandbox, SandboxError, SandboxProcess

__all__ = [
    "BootFunction",
    "InstallFailedError",
    "LocalProcess",
    "LocalSandbox",
    "ProvisioningPipeline",
    "RunKey",
    "Sandbox",
    "SandboxError",
    "SandboxProcess",
    "find_server_url",
    "run_key",
]
