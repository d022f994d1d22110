"""Configuration file loading and caching.

Handles:
- YAML file parsing
- Cascading merge (system -> user -> project -> environment)
- Conversion from dict to typed Config dataclass
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml

from gittyup.config.paths import get_config_paths
from gittyup.config.schema import (
    Config,
    LoggingConfig,
    SandboxConfig,
    ServerConfig,
    UserConfig,
)

# Module logger (may not be configured yet at import time)
_log = logging.getLogger("gittyup.config")

_cached_config: Config | None = None

_KNOWN_SECTIONS = {"server", "sandbox", "logging", "user"}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file, returning empty dict if not found or invalid."""
    if not path.exists():
        return {}

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
            return data if isinstance(data, dict) else {}
    except yaml.YAMLError as e:
        _log.warning("Invalid YAML in %s: %s", path, e)
        return {}
    except PermissionError:
        _log.debug("Permission denied reading %s", path)
        return {}
    except OSError as e:
        _log.warning("Error reading %s: %s", path, e)
        return {}


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge ``override`` onto ``base`` without touching either.

    Nested dicts merge recursively, lists and scalars are replaced, and a
    None in ``override`` leaves the base value alone so partial files stay
    partial.
    """
    merged = dict(base)
    for key, value in override.items():
        if value is None:
            continue
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def env_overrides() -> dict[str, Any]:
    """Build a config dict from GITTYUP_* environment variables."""
    overrides: dict[str, Any] = {}

    server_url = os.environ.get("GITTYUP_SERVER")
    if server_url:
        overrides.setdefault("server", {})["url"] = server_url

    log_path = os.environ.get("GITTYUP_LOG")
    if log_path:
        overrides.setdefault("logging", {})["file"] = log_path

    return overrides


def _str_list(value: Any, default: list[str]) -> list[str]:
    if not isinstance(value, list):
        return list(default)
    return [str(v) for v in value if isinstance(v, (str, int, float))]


def dict_to_config(data: dict[str, Any]) -> Config:
    """Convert a merged dict to the typed Config dataclass."""
    server_data = data.get("server") or {}
    server_defaults = ServerConfig()
    server = ServerConfig(
        url=server_data.get("url", server_defaults.url),
        ping_interval=server_data.get("ping_interval", server_defaults.ping_interval),
        fetch_timeout=float(server_data.get("fetch_timeout", server_defaults.fetch_timeout)),
    )

    sandbox_data = data.get("sandbox") or {}
    sandbox_defaults = SandboxConfig()
    sandbox = SandboxConfig(
        enabled=bool(sandbox_data.get("enabled", True)),
        install_command=_str_list(
            sandbox_data.get("install_command"), sandbox_defaults.install_command
        ),
        dev_command=_str_list(sandbox_data.get("dev_command"), sandbox_defaults.dev_command),
        manifest_markers=_str_list(
            sandbox_data.get("manifest_markers"), sandbox_defaults.manifest_markers
        ),
        dev_server_markers=_str_list(
            sandbox_data.get("dev_server_markers"), sandbox_defaults.dev_server_markers
        ),
        workdir=sandbox_data.get("workdir"),
    )

    log_data = data.get("logging") or {}
    logging_config = LoggingConfig(
        level=log_data.get("level"),
        verbose=log_data.get("verbose"),
        file=log_data.get("file"),
    )

    user_data = data.get("user") or {}
    user = UserConfig(
        display_name=user_data.get("display_name"),
        repository=user_data.get("repository"),
    )

    extra = {k: v for k, v in data.items() if k not in _KNOWN_SECTIONS}

    return Config(
        server=server,
        sandbox=sandbox,
        logging=logging_config,
        user=user,
        extra=extra,
    )


def load_config(
    project_root: str | None = None,
    config_file: Path | None = None,
    reload: bool = False,
) -> Config:
    """Load and merge config from all sources.

    Priority order (highest to lowest):
    1. Environment variables
    2. Explicit ``config_file`` (e.g. from --config)
    3. Project config ($project_root/.gittyup/config.yaml)
    4. User config
    5. System config

    Only the plain global config (no project root, no explicit file) is cached.
    """
    global _cached_config

    cacheable = project_root is None and config_file is None
    if _cached_config is not None and not reload and cacheable:
        return _cached_config

    merged: dict[str, Any] = {}
    paths = get_config_paths(project_root)
    if config_file is not None:
        paths.append(config_file)

    for path in paths:
        config_data = load_yaml_file(path)
        if config_data:
            _log.debug("Loaded config from %s", path)
            merged = deep_merge(merged, config_data)

    merged = deep_merge(merged, env_overrides())
    config = dict_to_config(merged)

    if cacheable:
        _cached_config = config

    return config


def get_config() -> Config:
    """Get the cached global config, loading it on first use."""
    if _cached_config is None:
        return load_config()
    return _cached_config


def reset_config() -> None:
    """Reset cached config. Useful for testing or forcing a reload."""
    global _cached_config
    _cached_config = None
