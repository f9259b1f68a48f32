"""Tests for lifecycle, reload and shutdown of the control plane."""

import asyncio
import os
import signal
import socket
import sys
from pathlib import Path

import pytest

from shellgate.config import ServerConfig
from shellgate.control import ControlPlane
from shellgate.exec import ExecResult
from shellgate.whitelist import WhitelistStore

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals required")


def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def write_whitelist(path: Path, *commands: str) -> Path:
    lines = ["allowed_commands:"] + [f"  - \"{c}\"" for c in commands]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


class FakeRunner:
    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.calls: list[str] = []

    async def __call__(self, command_line: str, timeout: float) -> ExecResult:
        self.calls.append(command_line)
        await asyncio.sleep(self.delay)
        return ExecResult(command=command_line, output=f"ran {command_line}\n".encode(), exit_code=0)


async def send_request(address, line: bytes, timeout: float = 5.0) -> bytes:
    reader, writer = await asyncio.open_connection(*address)
    try:
        writer.write(line)
        await writer.drain()
        return await asyncio.wait_for(reader.read(), timeout=timeout)
    finally:
        writer.close()


async def wait_for_generation(store: WhitelistStore, generation: int, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while store.current().generation < generation:
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("whitelist was not reloaded")
        await asyncio.sleep(0.02)


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    return write_whitelist(tmp_path / "shellgate.conf", "date")


def make_plane(tmp_path: Path, config_file: Path, runner=None, drain_timeout: float = 5) -> ControlPlane:
    config = ServerConfig(
        host="127.0.0.1",
        port=free_port(),
        connection_timeout=5,
        command_timeout=5,
        drain_timeout=drain_timeout,
        log_file=None,
        pid_file=tmp_path / "shellgate.pid",
        allowed_commands=["date"],
    )
    return ControlPlane(config, config_path=config_file, runner=runner or FakeRunner())


async def start_plane(plane: ControlPlane) -> asyncio.Task:
    task = asyncio.create_task(plane.run())
    await asyncio.wait_for(plane.started.wait(), timeout=5)
    return task


async def stop_plane(plane: ControlPlane, task: asyncio.Task) -> None:
    if not task.done():
        plane.request_shutdown()
        plane.request_shutdown()
    await asyncio.wait_for(task, timeout=5)


class TestReload:
    @pytest.mark.asyncio
    async def test_reload_admits_new_command(self, tmp_path: Path, config_file: Path):
        runner = FakeRunner()
        plane = make_plane(tmp_path, config_file, runner)
        task = await start_plane(plane)
        try:
            address = plane.dispatcher.address
            assert await send_request(address, b"uptime\n") == b"Command is not allowed: uptime\r\n"

            write_whitelist(config_file, "date", "uptime")
            generation = plane.store.current().generation
            plane.request_reload()
            await wait_for_generation(plane.store, generation + 1)

            assert await send_request(address, b"uptime\n") == b"ran uptime\n"
            assert runner.calls == ["uptime"]
        finally:
            await stop_plane(plane, task)

    @pytest.mark.asyncio
    async def test_malformed_reload_keeps_whitelist(self, tmp_path: Path, config_file: Path):
        runner = FakeRunner()
        plane = make_plane(tmp_path, config_file, runner)
        task = await start_plane(plane)
        try:
            before = plane.store.current()
            config_file.write_text("allowed_commands: [date, uptime\n")

            assert plane.reload() is False
            assert plane.store.current() is before

            address = plane.dispatcher.address
            assert await send_request(address, b"uptime\n") == b"Command is not allowed: uptime\r\n"
            assert await send_request(address, b"date\n") == b"ran date\n"
            assert runner.calls == ["date"]
        finally:
            await stop_plane(plane, task)

    @pytest.mark.asyncio
    async def test_sighup_triggers_reload(self, tmp_path: Path, config_file: Path):
        plane = make_plane(tmp_path, config_file)
        task = await start_plane(plane)
        try:
            generation = plane.store.current().generation
            write_whitelist(config_file, "date", "uptime")

            os.kill(os.getpid(), signal.SIGHUP)
            await wait_for_generation(plane.store, generation + 1)

            assert plane.store.current().permits("uptime", "uptime")
        finally:
            await stop_plane(plane, task)

    @pytest.mark.asyncio
    async def test_reload_does_not_touch_other_settings(self, tmp_path: Path, config_file: Path):
        plane = make_plane(tmp_path, config_file)
        config_file.write_text("port: 40000\nallowed_commands: [uptime]\n")

        assert plane.reload() is True
        assert plane.config.port != 40000
        assert plane.store.current().commands == frozenset({"uptime"})


class TestShutdown:
    @pytest.mark.asyncio
    async def test_shutdown_closes_listener(self, tmp_path: Path, config_file: Path):
        plane = make_plane(tmp_path, config_file)
        task = await start_plane(plane)
        address = plane.dispatcher.address

        plane.request_shutdown()
        await asyncio.wait_for(task, timeout=5)

        with pytest.raises(OSError):
            await send_request(address, b"date\n")

    @pytest.mark.asyncio
    async def test_sigterm_stops_server(self, tmp_path: Path, config_file: Path):
        plane = make_plane(tmp_path, config_file)
        task = await start_plane(plane)

        os.kill(os.getpid(), signal.SIGTERM)
        await asyncio.wait_for(task, timeout=5)
        assert not plane.dispatcher.is_serving

    @pytest.mark.asyncio
    async def test_in_flight_request_finishes_after_shutdown(self, tmp_path: Path, config_file: Path):
        plane = make_plane(tmp_path, config_file, FakeRunner(delay=0.5))
        task = await start_plane(plane)

        request = asyncio.create_task(send_request(plane.dispatcher.address, b"date\n"))
        await asyncio.sleep(0.1)
        plane.request_shutdown()

        assert await request == b"ran date\n"
        await asyncio.wait_for(task, timeout=5)

    @pytest.mark.asyncio
    async def test_second_shutdown_cancels_in_flight(self, tmp_path: Path, config_file: Path):
        plane = make_plane(tmp_path, config_file, FakeRunner(delay=30))
        task = await start_plane(plane)

        request = asyncio.create_task(send_request(plane.dispatcher.address, b"date\n", timeout=10))
        await asyncio.sleep(0.1)
        plane.request_shutdown()
        await asyncio.sleep(0.1)
        plane.request_shutdown()

        await asyncio.wait_for(task, timeout=5)
        assert await request == b""
        assert plane.dispatcher.active_count == 0

    @pytest.mark.asyncio
    async def test_single_shutdown_cancels_after_drain_timeout(self, tmp_path: Path, config_file: Path):
        plane = make_plane(tmp_path, config_file, FakeRunner(delay=30), drain_timeout=0.5)
        task = await start_plane(plane)

        request = asyncio.create_task(send_request(plane.dispatcher.address, b"date\n", timeout=10))
        await asyncio.sleep(0.1)
        plane.request_shutdown()

        await asyncio.wait_for(task, timeout=3)
        assert await request == b""
        assert plane.dispatcher.active_count == 0
        assert plane.dispatcher.stats["cancelled"] == 1

    @pytest.mark.asyncio
    async def test_bind_failure_raises(self, tmp_path: Path, config_file: Path):
        plane = make_plane(tmp_path, config_file)
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as blocker:
            blocker.bind(("127.0.0.1", plane.config.port))
            blocker.listen(1)
            with pytest.raises(OSError):
                await plane.run()


class TestPrepare:
    def test_foreground_writes_no_pid_file(self, tmp_path: Path, config_file: Path):
        plane = make_plane(tmp_path, config_file)
        plane.prepare()
        assert not plane.config.pid_file.exists()
