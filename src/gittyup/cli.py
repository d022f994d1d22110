"""Command-line interface for gittyup."""

from __future__ import annotations

import argparse
import asyncio
import sys
from collections.abc import Sequence
from pathlib import Path
from urllib.parse import urlsplit

from gittyup.config.schema import DEFAULT_DISPLAY_NAME, DEFAULT_REPOSITORY, Config
from gittyup.transport.addressing import parse_share_query


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="gittyup",
        description="Join a repository room: chat, see who is looking at what, run a preview",
    )
    parser.add_argument(
        "--version",
        action="version",
        version="%(prog)s 0.1.0",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=None,
        help="Increase log verbosity (can be repeated)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Config file path, merged over system/user/project config",
    )
    parser.add_argument(
        "--server",
        help="Room server URL (default: server.url from config)",
    )
    parser.add_argument(
        "--repo",
        help=f"Git URL or import path of the repository (default: {DEFAULT_REPOSITORY})",
    )
    parser.add_argument(
        "--name",
        help=f"Display name in the room (default: {DEFAULT_DISPLAY_NAME})",
    )
    parser.add_argument(
        "--link",
        help="Shared room link or query (?repo=...&name=...); --repo and --name win",
    )
    parser.add_argument(
        "--no-sandbox",
        action="store_true",
        help="Do not install or run the repository locally",
    )
    return parser


def resolve_room(parsed: argparse.Namespace, config: Config) -> tuple[str, str]:
    """Pick the repository and name from flags, link, config, then defaults."""
    link_repo = link_name = None
    if parsed.link:
        query = urlsplit(parsed.link).query if "://" in parsed.link else parsed.link
        link_repo, link_name = parse_share_query(query)

    repository = parsed.repo or link_repo or config.user.repository or DEFAULT_REPOSITORY
    name = parsed.name or link_name or config.user.display_name or DEFAULT_DISPLAY_NAME
    return repository, name


def run_cli(args: Sequence[str]) -> int:
    """Run the CLI with the given arguments."""
    parser = create_parser()
    parsed = parser.parse_args(args)

    from gittyup.config import load_config
    from gittyup.logging import setup_logging

    config = load_config(config_file=parsed.config)
    if parsed.server:
        config.server.url = parsed.server
    if parsed.verbose is not None:
        config.logging.verbose = parsed.verbose
    if parsed.no_sandbox:
        config.sandbox.enabled = False

    setup_logging(config.logging)

    repository, name = resolve_room(parsed, config)

    from gittyup.console.repl import run_room

    try:
        return asyncio.run(run_room(config, repository, name))
    except ValueError as e:
        print(f"gittyup: {e}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        return 130
