"""Timeout-bounded command execution."""

from shellgate.exec.types import ExecResult
from shellgate.exec.runner import run_trusted, timeout_message

__all__ = [
    "ExecResult",
    "run_trusted",
    "timeout_message",
]
