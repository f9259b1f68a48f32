"""Type definitions for connection handling."""

from dataclasses import dataclass
from typing import Literal

# Terminal states of a connection
HandlerState = Literal["aborted", "rejected", "responded", "failed"]

# Local exit statuses, never sent to the client
EXIT_OK = 0
EXIT_REJECTED = 1
EXIT_ABORTED = 2
EXIT_FAILED = 3


@dataclass(frozen=True)
class ConnectionRequest:
    """One inbound request line."""
    raw: str
    command_line: str
    command_name: str | None


@dataclass
class HandlerOutcome:
    """How a connection ended."""
    state: HandlerState
    exit_status: int
    peer: str = "unknown"
    command_name: str | None = None
    timed_out: bool = False


def parse_request(data: bytes) -> ConnectionRequest:
    """
    Parse a raw request line.

    The command name is the first whitespace-delimited token; the command
    line is the request minus its line ending, passed on verbatim.
    """
    raw = data.decode("utf-8", errors="surrogateescape")
    command_line = raw.rstrip("\r\n")
    tokens = command_line.split(maxsplit=1)
    return ConnectionRequest(
        raw=raw,
        command_line=command_line,
        command_name=tokens[0] if tokens else None,
    )
