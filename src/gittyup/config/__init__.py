"""Configuration management for GittyUp.

Provides hierarchical YAML-based configuration with:
- System-level config (/etc/gittyup/ or %PROGRAMDATA%)
- User-level config (~/.config/gittyup/ or %APPDATA%)
- Project-level config ($project_root/.gittyup/)
- Environment variable overrides (highest priority)

Example usage:
    from gittyup.config import load_config

    config = load_config()
    print(config.server.url)
    print(config.sandbox.install_command)
"""

from gittyup.config.loader import (
    deep_merge,
    get_config,
    load_config,
    reset_config,
)
from gittyup.config.paths import (
    get_config_paths,
    get_project_config_path,
    get_system_config_path,
    get_user_config_path,
)
from gittyup.config.schema import (
    Config,
    LoggingConfig,
    SandboxConfig,
    ServerConfig,
    UserConfig,
)

__all__ = [
    # Main API
    "Config",
    "load_config",
    "get_config",
    "reset_config",
    "deep_merge",
    # Schema types
    "LoggingConfig",
    "SandboxConfig",
    "ServerConfig",
    "UserConfig",
    # Path utilities
    "get_config_paths",
    "get_system_config_path",
    "get_user_config_path",
    "get_project_config_path",
]
