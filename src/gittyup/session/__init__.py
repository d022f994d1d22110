"""Client session: immutable state, actions, and the reducer that links them."""

from gittyup.session.state import (
    INITIAL_STATE,
    USER_PALETTE,
    ActiveUser,
    ConnectionPhase,
    ConsoleColor,
    LogEntry,
    Segment,
    SessionState,
    UserRecord,
    user_color,
)
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
    initialize,
    log,
    log_from_ansi,
)
from gittyup.session.reducer import SessionIntegrityError, index_active_files, transition
from gittyup.session.store import SessionStore

__all__ = [
    # State
    "INITIAL_STATE",
    "USER_PALETTE",
    "ActiveUser",
    "ConnectionPhase",
    "ConsoleColor",
    "LogEntry",
    "Segment",
    "SessionState",
    "UserRecord",
    "user_color",
    # Actions
    "Action",
    "AppendLog",
    "AwaitWelcome",
    "BeginConnect",
    "ChatReceived",
    "Disconnect",
    "Initialize",
    "ReplaceFileList",
    "SelectFile",
    "StreamDelta",
    "UpdateUserMetadata",
    "UserJoined",
    "UserLeft",
    "initialize",
    "log",
    "log_from_ansi",
    # Reducer
    "SessionIntegrityError",
    "index_active_files",
    "transition",
    "SessionStore",
]
