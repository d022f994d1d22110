"""GittyUp: repository rooms with chat, presence and a sandboxed live preview."""

__version__ = "0.1.0"

# Public API
from gittyup.config import Config, get_config, load_config
from gittyup.files import FileContentCache, FileFetchError
from gittyup.protocol import MalformedEnvelope, UnknownEnvelope, decode, encode, encode_intent
from gittyup.sandbox import LocalSandbox, ProvisioningPipeline, SandboxError
from gittyup.session import (
    ConnectionPhase,
    SessionIntegrityError,
    SessionState,
    SessionStore,
    transition,
)
from gittyup.transport import ConnectionController

__all__ = [
    # Main entry points
    "ConnectionController",
    "ProvisioningPipeline",
    "SessionStore",
    # Session
    "ConnectionPhase",
    "SessionState",
    "SessionIntegrityError",
    "transition",
    # Protocol
    "MalformedEnvelope",
    "UnknownEnvelope",
    "decode",
    "encode",
    "encode_intent",
    # Files and sandbox
    "FileContentCache",
    "FileFetchError",
    "LocalSandbox",
    "SandboxError",
    # Config
    "Config",
    "load_config",
    "get_config",
]
