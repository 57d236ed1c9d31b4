"""Controller connection: transport, admission, relay and reconnect."""

from neonbridge.connection.backoff import ReconnectBackoff
from neonbridge.connection.browse import MAX_BROWSE_ENTRIES, browse_directory
from neonbridge.connection.exceptions import (
    ConnectionManagerError,
    NotConfiguredError,
    TransportError,
)
from neonbridge.connection.manager import HEARTBEAT_INTERVAL_SECONDS, ConnectionManager
from neonbridge.connection.relay import (
    BUSY_ERROR,
    CANCELLED_MESSAGE,
    NOTHING_TO_CANCEL_ERROR,
    normalize_stream_message,
)
from neonbridge.connection.transport import (
    NORMAL_CLOSURE,
    Transport,
    WebSocketTransport,
    open_websocket,
)

__all__ = [
    "BUSY_ERROR",
    "CANCELLED_MESSAGE",
    "HEARTBEAT_INTERVAL_SECONDS",
    "MAX_BROWSE_ENTRIES",
    "NORMAL_CLOSURE",
    "NOTHING_TO_CANCEL_ERROR",
    "ConnectionManager",
    "ConnectionManagerError",
    "NotConfiguredError",
    "ReconnectBackoff",
    "Transport",
    "TransportError",
    "WebSocketTransport",
    "browse_directory",
    "normalize_stream_message",
    "open_websocket",
]
