"""CLI entry point for gittyup."""

import sys


def main() -> int:
    """Main entry point for the gittyup CLI."""
    from gittyup.cli import run_cli

    return run_cli(sys.argv[1:])


if __name__ == "__main__":
    sys.exit(main())
