"""Realtime transport layer."""

from .rest_client import ChatRestClient, FallbackReply
from .session import (
    Identity,
    SendOutcome,
    TransportSession,
    TransportState,
    generate_anonymous_session_id,
)
from .ws_client import RealtimeChannel, WebSocketChannel, connect_websocket

__all__ = [
    "ChatRestClient",
    "FallbackReply",
    "Identity",
    "SendOutcome",
    "TransportSession",
    "TransportState",
    "generate_anonymous_session_id",
    "RealtimeChannel",
    "WebSocketChannel",
    "connect_websocket",
]
