"""Configuration schema dataclasses for GittyUp.

Defines the structure of configuration at all levels (system, user, project).
All fields have defaults so partial configs merge together.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

DEFAULT_REPOSITORY = "github.com/blixt/chrome-ai-game"
DEFAULT_DISPLAY_NAME = "Bob"


@dataclass
class ServerConfig:
    """Where the room server lives.

    Example config.yaml:
        server:
          url: https://gittyup.example.com
    """

    url: str = "http://localhost:8080"
    ping_interval: float | None = 20.0  # WebSocket keepalive, None disables
    fetch_timeout: float = 30.0  # Per file-content request


@dataclass
class SandboxConfig:
    """How the preview sandbox installs and runs a project.

    Marker files are matched against the room's file list exactly
    (repository-relative paths).
    """

    enabled: bool = True
    install_command: list[str] = field(default_factory=lambda: ["npm", "install"])
    dev_command: list[str] = field(default_factory=lambda: ["npm", "run", "dev"])
    manifest_markers: list[str] = field(default_factory=lambda: ["package.json"])
    dev_server_markers: list[str] = field(
        default_factory=lambda: ["vite.config.js", "vite.config.ts"]
    )
    workdir: str | None = None  # Parent for sandbox temp dirs; None = system temp


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str | None = None  # DEBUG, INFO, WARNING, ERROR
    verbose: int | None = None  # 0-4, overrides level
    file: str | None = None  # Log file path


@dataclass
class UserConfig:
    """Connect-time defaults for the console frontend."""

    display_name: str | None = None
    repository: str | None = None


@dataclass
class Config:
    """Root configuration object."""

    server: ServerConfig = field(default_factory=ServerConfig)
    sandbox: SandboxConfig = field(default_factory=SandboxConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    user: UserConfig = field(default_factory=UserConfig)

    # Extension point for future config sections
    extra: dict[str, Any] = field(default_factory=dict)
