"""Command runner with a hard wall-clock deadline."""

import asyncio
import os
import signal
import sys
import time

from loguru import logger

from shellgate.exec.types import ExecResult

# How long to wait for a killed process to be collected
KILL_GRACE_SECONDS = 5.0


def timeout_message(command_name: str) -> str:
    """Text sent to the client in place of output when a command times out."""
    return f"{command_name} timed-out\n"


def _command_name(command_line: str) -> str:
    parts = command_line.split()
    return parts[0] if parts else ""


def _kill_process_tree(process: asyncio.subprocess.Process) -> None:
    """Kill the shell and everything in its session."""
    if process.returncode is not None:
        return
    try:
        if sys.platform != "win32":
            os.killpg(process.pid, signal.SIGKILL)
        else:
            process.kill()
    except ProcessLookupError:
        pass
    except PermissionError:
        # The group may have been reused or left our session; fall back to the shell itself
        try:
            process.kill()
        except ProcessLookupError:
            pass


async def run_trusted(command_line: str, timeout: float) -> ExecResult:
    """
    Run a whitelisted command line through the shell.

    The command line is NOT sanitized: callers must only pass lines whose
    command name passed the whitelist check. Output is stdout and stderr
    combined. If the deadline expires the process group is killed and the
    result carries the timeout text instead of output.
    """
    started = time.monotonic()

    try:
        process = await asyncio.create_subprocess_shell(
            command_line,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            start_new_session=sys.platform != "win32",
        )
    except (OSError, ValueError) as e:
        # ValueError: the line holds a NUL byte and cannot become argv
        logger.error(f"Cannot start command {command_line!r}: {e}")
        return ExecResult(command=command_line, error=str(e))

    try:
        output, _ = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        _kill_process_tree(process)
        try:
            await asyncio.wait_for(process.wait(), timeout=KILL_GRACE_SECONDS)
        except asyncio.TimeoutError:
            logger.warning(f"Process {process.pid} did not exit after kill")

        name = _command_name(command_line)
        logger.warning(f"Command {name!r} timed out after {timeout} seconds")
        return ExecResult(
            command=command_line,
            output=timeout_message(name).encode("utf-8"),
            exit_code=process.returncode,
            timed_out=True,
            duration=time.monotonic() - started,
        )
    except asyncio.CancelledError:
        _kill_process_tree(process)
        raise

    return ExecResult(
        command=command_line,
        output=output or b"",
        exit_code=process.returncode,
        duration=time.monotonic() - started,
    )
