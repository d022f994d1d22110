"""Room wire protocol: envelope parsing and serialization.

Every frame the room server sends is a single text message of the form::

    <senderId> <kind> <payload-json>

``senderId`` is an integer, ``kind`` is a bareword, and the JSON payload
occupies the remainder of the message (it may contain spaces). Frames the
client sends omit the sender id, since the server stamps it::

    <kind> <payload-json>

Known kinds decode into one of six envelope variants. An unrecognized kind is
not a framing error; it decodes to ``UnknownEnvelope`` so the caller can show
the raw line.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

_SENDER_ID_RE = re.compile(r"-?\d+")


class MalformedEnvelope(ValueError):
    """A frame could not be parsed.

    Raised when:
    - the frame has fewer than three whitespace-separated fields
    - the sender id is not an integer
    - the payload is not valid JSON
    - a known kind's payload does not match its schema
    """

    def __init__(self, message: str, raw: str) -> None:
        super().__init__(message)
        self.raw = raw


class WireModel(BaseModel):
    """Base model for payloads, accepting both camelCase and snake_case."""

    model_config = ConfigDict(populate_by_name=True)


class UserMetadata(WireModel):
    """A room participant as described by the server."""

    id: int
    name: str
    active_file: str | None = Field(default=None, alias="activeFile")

    @field_validator("active_file", mode="before")
    @classmethod
    def _blank_is_none(cls, value: Any) -> Any:
        # The server serializes "no active file" as an empty string
        return value or None


class ChatMessage(WireModel):
    content: str


class JoinMessage(WireModel):
    user: UserMetadata


class LeaveMessage(WireModel):
    pass


class LLMDeltaMessage(WireModel):
    """One streamed chunk of assistant output; ``id`` groups the chunks."""

    id: str
    content: str


class UpdateMetadataMessage(WireModel):
    active_file: str | None = Field(default=None, alias="activeFile")
    name: str | None = None

    def changes(self) -> dict[str, Any]:
        """The fields actually carried by this update, snake_cased."""
        return self.model_dump(exclude_none=True)


class WelcomeMessage(WireModel):
    users: list[UserMetadata]
    repo_hash: str = Field(alias="repoHash")
    current_commit: str = Field(alias="currentCommit")
    files: list[str]


@dataclass(frozen=True)
class ChatEnvelope:
    kind: ClassVar[str] = "chat"
    sender_id: int
    message: ChatMessage


@dataclass(frozen=True)
class JoinEnvelope:
    kind: ClassVar[str] = "join"
    sender_id: int
    message: JoinMessage


@dataclass(frozen=True)
class LeaveEnvelope:
    kind: ClassVar[str] = "leave"
    sender_id: int
    message: LeaveMessage


@dataclass(frozen=True)
class LLMDeltaEnvelope:
    kind: ClassVar[str] = "llmDelta"
    sender_id: int
    message: LLMDeltaMessage


@dataclass(frozen=True)
class UpdateMetadataEnvelope:
    kind: ClassVar[str] = "updateMetadata"
    sender_id: int
    message: UpdateMetadataMessage


@dataclass(frozen=True)
class WelcomeEnvelope:
    """Sent once to a newly connected client; ``sender_id`` is that client's own id."""

    kind: ClassVar[str] = "welcome"
    sender_id: int
    message: WelcomeMessage


Envelope = (
    ChatEnvelope
    | JoinEnvelope
    | LeaveEnvelope
    | LLMDeltaEnvelope
    | UpdateMetadataEnvelope
    | WelcomeEnvelope
)


@dataclass(frozen=True)
class UnknownEnvelope:
    """A well-framed message whose kind this client does not understand."""

    sender_id: int
    kind: str
    payload: Any
    raw: str


# kind -> (envelope class, payload model)
_REGISTRY: dict[str, tuple[type, type[WireModel]]] = {
    ChatEnvelope.kind: (ChatEnvelope, ChatMessage),
    JoinEnvelope.kind: (JoinEnvelope, JoinMessage),
    LeaveEnvelope.kind: (LeaveEnvelope, LeaveMessage),
    LLMDeltaEnvelope.kind: (LLMDeltaEnvelope, LLMDeltaMessage),
    UpdateMetadataEnvelope.kind: (UpdateMetadataEnvelope, UpdateMetadataMessage),
    WelcomeEnvelope.kind: (WelcomeEnvelope, WelcomeMessage),
}

KNOWN_KINDS = frozenset(_REGISTRY)


def decode(raw: str) -> Envelope | UnknownEnvelope:
    """Parse one inbound frame.

    Args:
        raw: The text of a single transport message.

    Returns:
        The envelope variant for ``kind``, or ``UnknownEnvelope``.

    Raises:
        MalformedEnvelope: If the frame cannot be parsed.

    Example:
        >>> decode('3 chat {"content": "hi there"}')
        ChatEnvelope(sender_id=3, message=ChatMessage(content='hi there'))
    """
    parts = raw.split(None, 2)
    if len(parts) != 3:
        raise MalformedEnvelope(f"Expected 3 fields, got {len(parts)}", raw)

    id_text, kind, payload_text = parts
    if not _SENDER_ID_RE.fullmatch(id_text):
        raise MalformedEnvelope(f"Invalid sender id: {id_text!r}", raw)
    sender_id = int(id_text)

    try:
        payload = json.loads(payload_text)
    except json.JSONDecodeError as e:
        raise MalformedEnvelope(f"Invalid JSON payload: {e}", raw) from e

    entry = _REGISTRY.get(kind)
    if entry is None:
        return UnknownEnvelope(sender_id=sender_id, kind=kind, payload=payload, raw=raw)

    envelope_cls, model_cls = entry
    try:
        message = model_cls.model_validate(payload)
    except ValidationError as e:
        raise MalformedEnvelope(f"Invalid {kind} payload: {e}", raw) from e

    return envelope_cls(sender_id=sender_id, message=message)


def _dump(message: WireModel) -> str:
    return message.model_dump_json(by_alias=True, exclude_none=True)


def encode(envelope: Envelope) -> str:
    """Serialize an envelope in the server-to-client three-field form."""
    return f"{envelope.sender_id} {envelope.kind} {_dump(envelope.message)}"


def encode_intent(message: ChatMessage | UpdateMetadataMessage) -> str:
    """Serialize an outbound client intent as ``<kind> <payload-json>``."""
    if isinstance(message, ChatMessage):
        kind = ChatEnvelope.kind
    elif isinstance(message, UpdateMetadataMessage):
        kind = UpdateMetadataEnvelope.kind
    else:
        raise TypeError(f"Not a client intent: {type(message).__name__}")
    return f"{kind} {_dump(message)}"
