"""Room connection controller.

Owns the WebSocket to the room server. Inbound frames are decoded and
turned into session actions; outbound intents (chat, file selection,
rename) are encoded and sent, then mirrored into the local session since
the server relays them to everyone except the sender.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosedError, WebSocketException

from gittyup.config.schema import ServerConfig
from gittyup.files.cache import FileContentCache, FileFetchError
from gittyup.logging import TRACE, get_logger
from gittyup.protocol.envelope import (
    ChatEnvelope,
    ChatMessage,
    JoinEnvelope,
    LeaveEnvelope,
    LLMDeltaEnvelope,
    MalformedEnvelope,
    UnknownEnvelope,
    UpdateMetadataEnvelope,
    UpdateMetadataMessage,
    WelcomeEnvelope,
    decode,
    encode_intent,
)
from gittyup.session.actions import (
    Action,
    AwaitWelcome,
    BeginConnect,
    ChatReceived,
    Disconnect,
    SelectFile,
    StreamDelta,
    UpdateUserMetadata,
    UserJoined,
    UserLeft,
    initialize,
    log,
)
from gittyup.session.reducer import SessionIntegrityError
from gittyup.session.state import ConnectionPhase, ConsoleColor, UserRecord
from gittyup.session.store import SessionStore
from gittyup.transport.addressing import (
    build_socket_url,
    validate_display_name,
    validate_repository_reference,
)

_log = get_logger("transport")

ConnectFunction = Callable[..., Awaitable[Any]]

CONNECTION_ERROR = "An error occurred"


def _user(metadata: Any) -> UserRecord:
    return UserRecord(id=metadata.id, name=metadata.name, active_file=metadata.active_file)


def envelope_to_action(envelope: Any) -> Action | None:
    """Map a decoded envelope to the session action it implies.

    Returns None for envelopes the session has no action for.
    """
    match envelope:
        case WelcomeEnvelope(sender_id=sender_id, message=message):
            return initialize(
                current_user_id=sender_id,
                users=[_user(user) for user in message.users],
                files=message.files,
                repository_id=message.repo_hash,
                commit_id=message.current_commit,
            )
        case ChatEnvelope(sender_id=sender_id, message=message):
            return ChatReceived(user_id=sender_id, content=message.content)
        case JoinEnvelope(message=message):
            return UserJoined(user=_user(message.user))
        case LeaveEnvelope(sender_id=sender_id):
            return UserLeft(id=sender_id)
        case LLMDeltaEnvelope(message=message):
            return StreamDelta(correlation_id=message.id, text=message.content)
        case UpdateMetadataEnvelope(sender_id=sender_id, message=message):
            return UpdateUserMetadata(id=sender_id, fields=message.changes())
        case _:
            return None


class ConnectionController:
    """Connects a SessionStore to a room on the server.

    Example:
        controller = ConnectionController(store, cache, config.server)
        await controller.connect("github.com/blixt/go-gittyup", "Ann")
        await controller.send_chat("hello")
        await controller.disconnect()
    """

    def __init__(
        self,
        store: SessionStore,
        cache: FileContentCache,
        config: ServerConfig | None = None,
        connect: ConnectFunction = websockets.connect,
    ) -> None:
        self._store = store
        self._cache = cache
        self._config = config or ServerConfig()
        self._connect = connect

        self._ws: Any = None
        self._reader: asyncio.Task[None] | None = None
        self._attempt = 0
        self._repository: str | None = None

    @property
    def connected(self) -> bool:
        return self._ws is not None

    @property
    def reader(self) -> asyncio.Task[None] | None:
        return self._reader

    async def connect(self, repository_ref: str, name: str) -> None:
        """Open a connection to the room for ``repository_ref`` as ``name``.

        An existing connection is closed first. Failing to open the socket is
        reported through the session (``Disconnect`` plus an error line), not
        raised.

        Raises:
            ValueError: If the repository reference or name is invalid.
        """
        repository = validate_repository_reference(repository_ref)
        name = validate_display_name(name)

        if self._ws is not None or self._reader is not None:
            await self.disconnect()

        if repository != self._repository:
            if self._repository is not None:
                _log.debug("Repository changed to %s, resetting file cache", repository)
            self._cache.reset()
            self._repository = repository

        url = build_socket_url(self._config.url, repository, name)
        self._attempt += 1
        attempt = self._attempt

        _log.info("Connecting to %s", url)
        opener = self._connect(url, ping_interval=self._config.ping_interval)
        self._store.dispatch(BeginConnect(url=repository, transport=opener))

        try:
            ws = await opener
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            if attempt != self._attempt:
                return
            _log.warning("Could not connect to %s: %s", url, e)
            self._fail()
            return

        if attempt != self._attempt:
            # Superseded by another connect or a disconnect while opening
            await ws.close()
            return

        self._ws = ws
        self._store.dispatch(AwaitWelcome(transport=ws))
        self._reader = asyncio.create_task(self._read(ws))

    def _fail(self) -> None:
        self._store.dispatch(Disconnect(error=CONNECTION_ERROR))
        self._store.dispatch(log("WebSocket encountered an error.", ConsoleColor.ERROR))

    async def _read(self, ws: Any) -> None:
        try:
            async for raw in ws:
                if isinstance(raw, bytes):
                    raw = raw.decode("utf-8", errors="replace")
                self.handle_message(raw)
        except ConnectionClosedError as e:
            _log.warning("Connection lost: %s", e)
            self._closed(ws)
            self._fail()
            return
        except SessionIntegrityError as e:
            _log.error("Closing connection: %s", e)
            self._closed(ws)
            await ws.close()
            self._store.dispatch(Disconnect(error=str(e)))
            self._store.dispatch(log(f"Session error: {e}", ConsoleColor.ERROR))
            raise

        self._closed(ws)
        reason = getattr(ws, "close_reason", None) or "n/a"
        _log.info("Connection closed (reason: %s)", reason)
        self._store.dispatch(Disconnect(error=None))
        self._store.dispatch(
            log(f"WebSocket connection closed (reason: {reason}).", ConsoleColor.SOCKET)
        )

    def _closed(self, ws: Any) -> None:
        if self._ws is ws:
            self._ws = None

    def handle_message(self, raw: str) -> None:
        """Apply one inbound frame to the session.

        Frames that cannot be parsed, or whose kind is unknown, are shown
        verbatim as a system line.

        Raises:
            SessionIntegrityError: If a welcome frame omits the local user.
        """
        _log.log(TRACE, "recv %s", raw)
        try:
            envelope = decode(raw)
        except MalformedEnvelope as e:
            _log.warning("Malformed frame: %s", e)
            self._store.dispatch(log(raw))
            return

        if isinstance(envelope, UnknownEnvelope):
            _log.debug("Unknown frame kind %r", envelope.kind)
            self._store.dispatch(log(raw))
            return

        action = envelope_to_action(envelope)
        if action is not None:
            self._store.dispatch(action)

    async def _send(self, frame: str) -> bool:
        if self._ws is None:
            _log.warning("Not connected, dropping %s", frame.split(" ", 1)[0])
            return False
        _log.log(TRACE, "send %s", frame)
        try:
            await self._ws.send(frame)
        except WebSocketException as e:
            _log.warning("Send failed: %s", e)
            return False
        return True

    async def select_file(self, path: str) -> bool:
        """Announce ``path`` as the local user's open file and select it."""
        sent = await self._send(encode_intent(UpdateMetadataMessage(active_file=path)))
        if sent:
            self._store.dispatch(SelectFile(path=path))
        return sent

    async def send_chat(self, text: str) -> bool:
        """Send a chat line. Blank input is ignored."""
        content = text.strip()
        if not content:
            return False
        sent = await self._send(encode_intent(ChatMessage(content=content)))
        user_id = self._store.state.current_user_id
        if sent and user_id is not None:
            self._store.dispatch(ChatReceived(user_id=user_id, content=content))
        return sent

    async def rename(self, name: str) -> bool:
        """Change the local user's display name.

        Raises:
            ValueError: If ``name`` is not a valid display name.
        """
        name = validate_display_name(name)
        sent = await self._send(encode_intent(UpdateMetadataMessage(name=name)))
        user_id = self._store.state.current_user_id
        if sent and user_id is not None:
            self._store.dispatch(UpdateUserMetadata(id=user_id, fields={"name": name}))
        return sent

    async def disconnect(self) -> None:
        """Close the connection and wait for the session to reflect it."""
        self._attempt += 1
        ws, reader = self._ws, self._reader
        self._reader = None

        if ws is not None:
            await ws.close()
        if reader is not None:
            await asyncio.gather(reader, return_exceptions=True)
        elif self._store.state.phase is not ConnectionPhase.DISCONNECTED:
            self._store.dispatch(Disconnect(error=None))
        self._ws = None

    async def wait_closed(self) -> None:
        """Wait for the reader to finish.

        Raises:
            SessionIntegrityError: If the session was ended by a bad welcome.
        """
        if self._reader is not None:
            await self._reader

    async def open_file(self, path: str) -> str:
        """Fetch ``path`` at the current commit for display.

        Failures come back as comment text rather than an exception.
        """
        state = self._store.state
        if not state.repository_id or not state.commit_id:
            return f"// Error loading {path}\n// Not connected to a repository"
        try:
            return await self._cache.fetch(state.repository_id, state.commit_id, path)
        except FileFetchError as e:
            return f"// Error loading {path}\n// {e}"
