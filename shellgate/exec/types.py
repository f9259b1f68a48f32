"""Type definitions for command execution."""

from dataclasses import dataclass


@dataclass
class ExecResult:
    """Result of command execution."""
    command: str
    output: bytes = b""
    exit_code: int | None = None
    timed_out: bool = False
    error: str | None = None
    duration: float = 0.0

    @property
    def success(self) -> bool:
        return not self.timed_out and self.error is None and self.exit_code == 0

    @property
    def payload(self) -> bytes:
        """Bytes delivered to the client."""
        return self.output
