"""Session state types.

This module defines:
- ConnectionPhase: lifecycle of the room connection
- UserRecord, Segment, LogEntry: immutable building blocks of a snapshot
- SessionState: one immutable snapshot of everything the client knows
- Console colors and the per-user color function

Snapshots are frozen dataclasses holding tuples and read-only mappings.
A transition builds a new snapshot; earlier snapshots stay valid.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Literal


class ConnectionPhase(Enum):
    """Where the room connection is in its lifecycle.

    - DISCONNECTED: no transport
    - CONNECTING: transport requested, not yet open
    - AWAITING_WELCOME: transport open, waiting for the welcome frame
    - READY: welcome applied; roster and files are known
    """

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AWAITING_WELCOME = "awaiting_welcome"
    READY = "ready"

    def __str__(self) -> str:
        return self.value


class ConsoleColor:
    """Style classes for room console lines."""

    SYSTEM = "text-slate-500 dark:text-slate-400"
    ERROR = "text-red-600 dark:text-red-400"
    SANDBOX = "text-slate-800 dark:text-slate-200 font-mono"
    SOCKET = "text-emerald-600 dark:text-emerald-400"
    CURRENT_USER = "text-cyan-600 dark:text-cyan-400"


@dataclass(frozen=True)
class UserColor:
    text: str
    bg: str


USER_PALETTE: tuple[UserColor, ...] = (
    UserColor(text="text-blue-600 dark:text-blue-400", bg="bg-blue-600 dark:bg-blue-600"),
    UserColor(text="text-amber-600 dark:text-amber-400", bg="bg-amber-600 dark:bg-amber-600"),
    UserColor(text="text-pink-600 dark:text-pink-400", bg="bg-pink-600 dark:bg-pink-600"),
    UserColor(text="text-teal-600 dark:text-teal-400", bg="bg-teal-600 dark:bg-teal-600"),
    UserColor(text="text-indigo-600 dark:text-indigo-400", bg="bg-indigo-600 dark:bg-indigo-600"),
)


def user_color(
    user_id: int,
    current_user_id: int | None = None,
    kind: Literal["text", "bg"] = "text",
) -> str:
    """Return a stable color class for a user.

    The local participant always gets ``ConsoleColor.CURRENT_USER`` so they
    can spot themselves regardless of join order. Everyone else is colored
    by ``id`` modulo the palette size.
    """
    if current_user_id is not None and user_id == current_user_id:
        return ConsoleColor.CURRENT_USER
    color = USER_PALETTE[user_id % len(USER_PALETTE)]
    return color.bg if kind == "bg" else color.text


@dataclass(frozen=True)
class UserRecord:
    """A room participant. ``id`` is stable for the life of the session."""

    id: int
    name: str
    active_file: str | None = None


@dataclass(frozen=True)
class ActiveUser:
    """Who is looking at a file, as shown next to it in the file list."""

    id: int
    name: str


@dataclass(frozen=True)
class Segment:
    """A run of console text sharing one style, optionally a link."""

    text: str
    style: str = ConsoleColor.SYSTEM
    href: str | None = None


@dataclass(frozen=True)
class LogEntry:
    """One console line.

    Entries with a ``correlation_id`` grow as streamed deltas arrive;
    entries without one never change after being appended.
    """

    segments: tuple[Segment, ...]
    correlation_id: str | None = None

    @property
    def text(self) -> str:
        return "".join(segment.text for segment in self.segments)


def frozen_mapping(data: Mapping[Any, Any] | None = None) -> Mapping[Any, Any]:
    """Wrap a fresh copy of ``data`` in a read-only view."""
    return MappingProxyType(dict(data or {}))


@dataclass(frozen=True)
class SessionState:
    """An immutable snapshot of the client session.

    Invariants:
    - ``current_user``, when set, is the roster entry with the same id
    - in DISCONNECTED, roster, files and selection are empty
    - ``files_by_active_user`` is derived from ``roster`` and never edited
      on its own
    """

    phase: ConnectionPhase = ConnectionPhase.DISCONNECTED
    roster: Mapping[int, UserRecord] = field(default_factory=frozen_mapping)
    current_user: UserRecord | None = None
    files: tuple[str, ...] = ()
    repository_id: str | None = None
    commit_id: str | None = None
    repository_url: str | None = None
    selected_file: str | None = None
    logs: tuple[LogEntry, ...] = ()
    last_error: str | None = None
    transport: Any = field(default=None, compare=False)
    files_by_active_user: Mapping[str, tuple[ActiveUser, ...]] = field(
        default_factory=frozen_mapping
    )

    @property
    def current_user_id(self) -> int | None:
        return self.current_user.id if self.current_user else None

    def color_for(self, user_id: int) -> str:
        return user_color(user_id, self.current_user_id)


INITIAL_STATE = SessionState()
