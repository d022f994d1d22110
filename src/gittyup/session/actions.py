"""Actions accepted by the session reducer.

Each action is a frozen dataclass. The reducer matches on the concrete type,
so the set of actions is closed: adding one means adding a reducer branch.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from gittyup.session.state import ConsoleColor, Segment, UserRecord


@dataclass(frozen=True)
class BeginConnect:
    """A transport has been created for ``url`` and is opening."""

    url: str
    transport: Any = field(default=None, compare=False)


@dataclass(frozen=True)
class AwaitWelcome:
    """The transport is open; the server's welcome frame is pending.

    ``transport``, if given, replaces the handle stored by BeginConnect
    (the opened connection rather than the pending open).
    """

    transport: Any = field(default=None, compare=False)


@dataclass(frozen=True)
class Initialize:
    """Apply the server's welcome frame."""

    current_user_id: int
    users: tuple[UserRecord, ...]
    files: tuple[str, ...]
    repository_id: str
    commit_id: str


@dataclass(frozen=True)
class Disconnect:
    error: str | None = None


@dataclass(frozen=True)
class AppendLog:
    segments: tuple[Segment, ...]


@dataclass(frozen=True)
class StreamDelta:
    """One chunk of streamed output; chunks sharing ``correlation_id`` form one line."""

    correlation_id: str
    text: str


@dataclass(frozen=True)
class SelectFile:
    path: str


@dataclass(frozen=True)
class ReplaceFileList:
    files: tuple[str, ...]
    repository_id: str
    commit_id: str


@dataclass(frozen=True)
class UpdateUserMetadata:
    """Merge ``fields`` (``name`` and/or ``active_file``) into user ``id``."""

    id: int
    fields: Mapping[str, Any]


@dataclass(frozen=True)
class UserJoined:
    user: UserRecord


@dataclass(frozen=True)
class UserLeft:
    id: int


@dataclass(frozen=True)
class ChatReceived:
    user_id: int
    content: str


Action = (
    BeginConnect
    | AwaitWelcome
    | Initialize
    | Disconnect
    | AppendLog
    | StreamDelta
    | SelectFile
    | ReplaceFileList
    | UpdateUserMetadata
    | UserJoined
    | UserLeft
    | ChatReceived
)


def log(message: str, style: str = ConsoleColor.SYSTEM) -> AppendLog:
    """Build an action that appends a single-segment console line."""
    return AppendLog(segments=(Segment(text=message, style=style),))


def log_from_ansi(text: str) -> AppendLog:
    """Build an action that appends a line from ANSI-colored process output."""
    # gittyup.ansi imports session.state
    from gittyup.ansi import ansi_to_segments

    return AppendLog(segments=tuple(ansi_to_segments(text)))


def initialize(
    current_user_id: int,
    users: Iterable[UserRecord],
    files: Sequence[str],
    repository_id: str,
    commit_id: str,
) -> Initialize:
    """Build an Initialize action from any iterables."""
    return Initialize(
        current_user_id=current_user_id,
        users=tuple(users),
        files=tuple(files),
        repository_id=repository_id,
        commit_id=commit_id,
    )
