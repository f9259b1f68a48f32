"""TCP server: connection handling and dispatch."""

from shellgate.server.types import ConnectionRequest, HandlerOutcome, parse_request
from shellgate.server.handler import ConnectionHandler, rejection_message
from shellgate.server.dispatcher import ConnectionDispatcher

__all__ = [
    "ConnectionRequest",
    "HandlerOutcome",
    "parse_request",
    "ConnectionHandler",
    "rejection_message",
    "ConnectionDispatcher",
]
