"""Connect-time addressing: repository references, names, and room URLs.

A repository can be given either as a Git URL or as a Go-style import
path. Rooms are keyed by the import path form::

    https://github.com/blixt/go-gittyup.git -> github.com/blixt/go-gittyup
    git@github.com:blixt/go-gittyup.git     -> github.com/blixt/go-gittyup
    github.com/blixt/go-gittyup             -> github.com/blixt/go-gittyup
"""

from __future__ import annotations

import re
from urllib.parse import parse_qs, quote, urlencode, urlsplit, urlunsplit

from gittyup.config.schema import DEFAULT_DISPLAY_NAME, DEFAULT_REPOSITORY

_IMPORT_PATH_RE = re.compile(r"[\w\-.]+/[\w\-.]+/[\w\-.]+")
_GIT_URL_RE = re.compile(r"(https?://|git@).*\.git")
_NAME_RE = re.compile(r"[A-Za-z0-9\s\-_]+")

NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 50


def convert_to_import_path(reference: str) -> str:
    """Normalize a repository reference to its import path form.

    Unrecognized input is returned unchanged.
    """
    reference = reference.strip()
    if _IMPORT_PATH_RE.fullmatch(reference):
        return reference

    if reference.startswith(("https://", "http://")):
        result = re.sub(r"^https?://", "", reference)
        return re.sub(r"\.git$", "", result)

    if reference.startswith("git@"):
        result = reference[len("git@"):].replace(":", "/", 1)
        return re.sub(r"\.git$", "", result)

    return reference


def validate_repository_reference(reference: str) -> str:
    """Check that ``reference`` is a Git URL or an import path and normalize it.

    Raises:
        ValueError: If the reference is neither form.
    """
    reference = reference.strip()
    if not (_GIT_URL_RE.fullmatch(reference) or _IMPORT_PATH_RE.fullmatch(reference)):
        raise ValueError(
            "Please enter a valid Git repository URL (https:// or git@) "
            "or Go import path (e.g. github.com/user/repo)"
        )
    return convert_to_import_path(reference)


def validate_display_name(name: str) -> str:
    """Trim and check a participant display name.

    Raises:
        ValueError: If the name is too short, too long, or has other characters.
    """
    name = name.strip()
    if not NAME_MIN_LENGTH <= len(name) <= NAME_MAX_LENGTH:
        raise ValueError(
            f"Name must be between {NAME_MIN_LENGTH} and {NAME_MAX_LENGTH} characters"
        )
    if not _NAME_RE.fullmatch(name):
        raise ValueError("Name may only contain letters, digits, spaces, '-' and '_'")
    return name


def build_socket_url(server_url: str, repository: str, name: str) -> str:
    """Build the room WebSocket URL for ``repository`` on ``server_url``.

    ``http`` becomes ``ws`` and ``https`` becomes ``wss``.

    Example:
        >>> build_socket_url("https://example.com", "github.com/a/b", "Ann Lee")
        'wss://example.com/v1/repo/github.com/a/b?name=Ann%20Lee'
    """
    parts = urlsplit(server_url)
    scheme = {"https": "wss", "http": "ws"}.get(parts.scheme, parts.scheme or "ws")
    base_path = parts.path.rstrip("/")
    path = f"{base_path}/v1/repo/{quote(repository)}"
    query = f"name={quote(name, safe='')}"
    return urlunsplit((scheme, parts.netloc, path, query, ""))


def build_share_query(repository: str, name: str) -> str:
    """Encode the shareable ``?repo=...&name=...`` link state."""
    return "?" + urlencode({"repo": repository, "name": name})


def parse_share_query(query: str) -> tuple[str, str]:
    """Decode a share query back into ``(repository, name)``, with defaults."""
    params = parse_qs(query.lstrip("?"))
    repository = params.get("repo", [""])[0] or DEFAULT_REPOSITORY
    name = params.get("name", [""])[0] or DEFAULT_DISPLAY_NAME
    return repository, name
