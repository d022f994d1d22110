"""Room transport: addressing and the WebSocket connection controller."""

from gittyup.transport.addressing import (
    build_share_query,
    build_socket_url,
    convert_to_import_path,
    parse_share_query,
    validate_display_name,
    validate_repository_reference,
)
from gittyup.transport.controller import ConnectionController, envelope_to_action

__all__ = [
    "ConnectionController",
    "build_share_query",
    "build_socket_url",
    "convert_to_import_path",
    "envelope_to_action",
    "parse_share_query",
    "validate_display_name",
    "validate_repository_reference",
]
