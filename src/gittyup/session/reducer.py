"""Session state machine.

``transition(state, action)`` is a pure function: it never mutates its input
and always returns a complete snapshot. Out-of-order or duplicate server
events (a second join for the same id, a leave for an unknown id, ...) are
rejected with a warning on the ``gittyup.session`` logger and leave the state
unchanged. The one exception is a welcome frame that does not contain the
local user, which raises ``SessionIntegrityError``: without knowing who we
are there is no consistent view to show.

The ``files_by_active_user`` index is rebuilt after every transition,
including rejected ones.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import replace

from gittyup.logging import get_logger
from gittyup.session.actions import (
    Action,
    AppendLog,
    AwaitWelcome,
    BeginConnect,
    ChatReceived,
    Disconnect,
    Initialize,
    ReplaceFileList,
    SelectFile,
    StreamDelta,
    UpdateUserMetadata,
    UserJoined,
    UserLeft,
)
from gittyup.session.state import (
    ActiveUser,
    ConnectionPhase,
    ConsoleColor,
    LogEntry,
    Segment,
    SessionState,
    UserRecord,
    frozen_mapping,
)

log = get_logger("session")

_MERGEABLE_FIELDS = frozenset({"name", "active_file"})


class SessionIntegrityError(RuntimeError):
    """The server sent a welcome frame the client cannot build a session from."""


def _line(message: str, style: str = ConsoleColor.SYSTEM) -> LogEntry:
    return LogEntry(segments=(Segment(text=message, style=style),))


def _with_log(state: SessionState, entry: LogEntry) -> SessionState:
    return replace(state, logs=state.logs + (entry,))


def index_active_files(
    roster: Mapping[int, UserRecord],
    current_user_id: int | None,
) -> Mapping[str, tuple[ActiveUser, ...]]:
    """Group other participants by the file they have open.

    The local user and users without an active file are skipped. Users keep
    roster order within each file.
    """
    grouped: dict[str, list[ActiveUser]] = {}
    for user in roster.values():
        if user.id == current_user_id or not user.active_file:
            continue
        grouped.setdefault(user.active_file, []).append(ActiveUser(id=user.id, name=user.name))
    return frozen_mapping({path: tuple(users) for path, users in grouped.items()})


def transition(state: SessionState, action: Action) -> SessionState:
    """Apply ``action`` to ``state`` and return the next snapshot.

    Raises:
        SessionIntegrityError: If an Initialize action does not include the
            current user in its user list.
        TypeError: If ``action`` is not a known action type.
    """
    next_state = _apply(state, action)
    return replace(
        next_state,
        files_by_active_user=index_active_files(next_state.roster, next_state.current_user_id),
    )


def _apply(state: SessionState, action: Action) -> SessionState:
    match action:
        case BeginConnect(url=url, transport=transport):
            return _with_log(
                replace(
                    state,
                    phase=ConnectionPhase.CONNECTING,
                    last_error=None,
                    repository_url=url,
                    transport=transport,
                ),
                _line(f"Connecting to {url}...", ConsoleColor.SOCKET),
            )

        case AwaitWelcome(transport=transport):
            if state.phase is not ConnectionPhase.CONNECTING:
                log.warning("Transport opened while %s, ignoring", state.phase)
                return state
            return replace(
                state,
                phase=ConnectionPhase.AWAITING_WELCOME,
                transport=transport if transport is not None else state.transport,
            )

        case Initialize():
            return _initialize(state, action)

        case Disconnect(error=error):
            return replace(
                state,
                phase=ConnectionPhase.DISCONNECTED,
                last_error=error,
                roster=frozen_mapping(),
                current_user=None,
                files=(),
                selected_file=None,
                repository_id=None,
                commit_id=None,
                repository_url=None,
                transport=None,
            )

        case AppendLog(segments=segments):
            return _with_log(state, LogEntry(segments=tuple(segments)))

        case StreamDelta():
            return _stream_delta(state, action)

        case SelectFile(path=path):
            return replace(state, selected_file=path)

        case ReplaceFileList(files=files, repository_id=repository_id, commit_id=commit_id):
            files = tuple(files)
            selected = state.selected_file
            if selected is not None and selected not in files:
                selected = None
            return replace(
                state,
                files=files,
                repository_id=repository_id,
                commit_id=commit_id,
                selected_file=selected,
            )

        case UpdateUserMetadata():
            return _update_metadata(state, action)

        case UserJoined(user=user):
            if user.id in state.roster:
                log.warning("User %d already exists in roster, ignoring join", user.id)
                return state
            roster = dict(state.roster)
            roster[user.id] = user
            return _with_log(
                replace(state, roster=frozen_mapping(roster)),
                _line(f"{user.name} (id: {user.id}) joined the room", state.color_for(user.id)),
            )

        case UserLeft(id=user_id):
            if state.current_user is not None and user_id == state.current_user.id:
                log.warning("Leave for the current user %d, ignoring", user_id)
                return state
            leaving = state.roster.get(user_id)
            if leaving is None:
                log.warning("User %d not found in roster, ignoring leave", user_id)
                return state
            roster = {uid: u for uid, u in state.roster.items() if uid != user_id}
            return _with_log(
                replace(state, roster=frozen_mapping(roster)),
                _line(f"{leaving.name} (id: {leaving.id}) left the room", state.color_for(user_id)),
            )

        case ChatReceived(user_id=user_id, content=content):
            sender = state.roster.get(user_id)
            if sender is None:
                log.warning("Chat from unknown user %d, ignoring", user_id)
                return state
            return _with_log(state, _line(f"<{sender.name}> {content}", state.color_for(user_id)))

        case _:
            raise TypeError(f"Unknown action: {type(action).__name__}")


def _initialize(state: SessionState, action: Initialize) -> SessionState:
    roster = {user.id: user for user in action.users}
    current = roster.get(action.current_user_id)
    if current is None:
        raise SessionIntegrityError(
            f"Current user {action.current_user_id} not found in users list"
        )
    return _with_log(
        replace(
            state,
            phase=ConnectionPhase.READY,
            roster=frozen_mapping(roster),
            current_user=current,
            files=tuple(action.files),
            repository_id=action.repository_id,
            commit_id=action.commit_id,
            last_error=None,
        ),
        _line(f"Connected to repository at commit {action.commit_id}"),
    )


def _stream_delta(state: SessionState, action: StreamDelta) -> SessionState:
    segment = Segment(text=action.text, style=ConsoleColor.SYSTEM)
    for index, entry in enumerate(state.logs):
        if entry.correlation_id == action.correlation_id:
            grown = replace(entry, segments=entry.segments + (segment,))
            logs = state.logs[:index] + (grown,) + state.logs[index + 1 :]
            return replace(state, logs=logs)
    return _with_log(
        state, LogEntry(segments=(segment,), correlation_id=action.correlation_id)
    )


def _update_metadata(state: SessionState, action: UpdateUserMetadata) -> SessionState:
    existing = state.roster.get(action.id)
    if existing is None:
        log.warning("User metadata for %d not found, ignoring update", action.id)
        return state

    changes = {k: v for k, v in action.fields.items() if k in _MERGEABLE_FIELDS}
    unknown = set(action.fields) - _MERGEABLE_FIELDS
    if unknown:
        log.debug("Ignoring unknown metadata fields for %d: %s", action.id, sorted(unknown))

    updated = replace(existing, **changes)
    roster = dict(state.roster)
    roster[action.id] = updated

    next_state = replace(state, roster=frozen_mapping(roster))
    if state.current_user is not None and state.current_user.id == action.id:
        next_state = replace(next_state, current_user=updated)

    new_name = changes.get("name")
    if new_name and new_name != existing.name:
        next_state = _with_log(next_state, _line(f"{existing.name} is now known as {new_name}"))
    return next_state
