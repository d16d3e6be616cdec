"""
Transport package.

A transport owns one connection to the remote assistant service and exposes
it as named events. The session protocol client only depends on the
`Transport` capability, so the concrete channel can be swapped.
"""

from .base import ConnectionState, Transport, TransportHandlers
from .websocket_transport import WebSocketTransport

__all__ = [
    "ConnectionState",
    "Transport",
    "TransportHandlers",
    "WebSocketTransport",
]
