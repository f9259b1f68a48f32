"""Tests for the timeout-bounded command runner."""

import asyncio
import os
import sys
import time
from pathlib import Path

import pytest

from shellgate.exec import ExecResult, run_trusted, timeout_message

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell required")


def is_running(pid: int) -> bool:
    """True if the process exists and is not a zombie."""
    if Path("/proc/self").exists():
        try:
            stat = Path(f"/proc/{pid}/stat").read_text()
        except OSError:
            return False
        return stat.rsplit(")", 1)[1].split()[0] != "Z"
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    return True


class TestRunTrusted:
    @pytest.mark.asyncio
    async def test_captures_stdout(self):
        result = await run_trusted("echo hello", timeout=5)
        assert isinstance(result, ExecResult)
        assert result.output == b"hello\n"
        assert result.payload == b"hello\n"
        assert result.exit_code == 0
        assert result.success
        assert not result.timed_out

    @pytest.mark.asyncio
    async def test_merges_stderr(self):
        result = await run_trusted("echo out; echo err 1>&2", timeout=5)
        assert b"out\n" in result.output
        assert b"err\n" in result.output

    @pytest.mark.asyncio
    async def test_non_zero_exit_still_returns_output(self):
        result = await run_trusted("echo partial; exit 3", timeout=5)
        assert result.output == b"partial\n"
        assert result.exit_code == 3
        assert not result.success
        assert not result.timed_out

    @pytest.mark.asyncio
    async def test_no_output(self):
        result = await run_trusted("true", timeout=5)
        assert result.output == b""
        assert result.exit_code == 0

    @pytest.mark.asyncio
    async def test_arguments_passed_verbatim_to_shell(self):
        result = await run_trusted("echo a   b 'c  d'", timeout=5)
        assert result.output == b"a b c  d\n"

    @pytest.mark.asyncio
    async def test_stdin_is_closed(self):
        result = await run_trusted("cat", timeout=5)
        assert result.output == b""
        assert not result.timed_out

    @pytest.mark.asyncio
    async def test_timeout(self):
        started = time.monotonic()
        result = await run_trusted("sleep 10", timeout=1)
        elapsed = time.monotonic() - started

        assert result.timed_out
        assert result.payload == b"sleep timed-out\n"
        assert elapsed < 3

    @pytest.mark.asyncio
    async def test_timeout_kills_descendants(self, tmp_path: Path):
        pid_path = tmp_path / "child.pid"
        result = await run_trusted(f"sleep 30 & echo $! > {pid_path}; wait", timeout=1)
        assert result.timed_out

        child_pid = int(pid_path.read_text().strip())
        for _ in range(50):
            if not is_running(child_pid):
                break
            await asyncio.sleep(0.1)
        assert not is_running(child_pid)

    @pytest.mark.asyncio
    async def test_nul_byte_in_command_line_is_a_spawn_failure(self):
        result = await run_trusted("echo a\x00b", timeout=5)
        assert result.error
        assert result.output == b""
        assert result.exit_code is None
        assert not result.timed_out
        assert not result.success


def test_timeout_message():
    assert timeout_message("sleep") == "sleep timed-out\n"
