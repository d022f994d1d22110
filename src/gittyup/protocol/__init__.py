"""Room wire protocol."""

from gittyup.protocol.envelope import (
    KNOWN_KINDS,
    ChatEnvelope,
    ChatMessage,
    Envelope,
    JoinEnvelope,
    JoinMessage,
    LeaveEnvelope,
    LeaveMessage,
    LLMDeltaEnvelope,
    LLMDeltaMessage,
    MalformedEnvelope,
    UnknownEnvelope,
    UpdateMetadataEnvelope,
    UpdateMetadataMessage,
    UserMetadata,
    WelcomeEnvelope,
    WelcomeMessage,
    decode,
    encode,
    encode_intent,
)

__all__ = [
    "KNOWN_KINDS",
    "ChatEnvelope",
    "ChatMessage",
    "Envelope",
    "JoinEnvelope",
    "JoinMessage",
    "LeaveEnvelope",
    "LeaveMessage",
    "LLMDeltaEnvelope",
    "LLMDeltaMessage",
    "MalformedEnvelope",
    "UnknownEnvelope",
    "UpdateMetadataEnvelope",
    "UpdateMetadataMessage",
    "UserMetadata",
    "WelcomeEnvelope",
    "WelcomeMessage",
    "decode",
    "encode",
    "encode_intent",
]
