"""Per-connection request handling."""

import asyncio
from typing import Awaitable, Callable

from loguru import logger

from shellgate.exec import ExecResult, run_trusted
from shellgate.server.types import (
    EXIT_ABORTED,
    EXIT_OK,
    EXIT_REJECTED,
    ConnectionRequest,
    HandlerOutcome,
    parse_request,
)
from shellgate.whitelist import WhitelistStore

CRLF = "\r\n"

# How long a flushed response may take to close before the socket is aborted
CLOSE_GRACE_SECONDS = 5.0

Runner = Callable[[str, float], Awaitable[ExecResult]]


def rejection_message(command_name: str | None) -> str:
    """Message sent to the client for a command that is not whitelisted."""
    return f"Command is not allowed: {command_name or ''}"


def peer_host(writer: asyncio.StreamWriter) -> str:
    peername = writer.get_extra_info("peername")
    if isinstance(peername, tuple) and peername:
        return str(peername[0])
    return str(peername or "unknown")


class ConnectionHandler:
    """
    Owns one client connection from first byte to close.

    Phases run strictly in order: read, authorize, then either reject or
    execute and respond. Every path closes the connection, and at most one
    response is written.
    """

    def __init__(
        self,
        store: WhitelistStore,
        connection_timeout: float,
        command_timeout: float,
        runner: Runner = run_trusted,
    ):
        self.store = store
        self.connection_timeout = connection_timeout
        self.command_timeout = command_timeout
        self.runner = runner

    async def handle(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> HandlerOutcome:
        """Process one connection and close it."""
        peer = peer_host(writer)
        logger.info(f"Connected, remote host {peer}")

        # Stays False on cancellation or a stalled write, so the socket is aborted
        graceful = False
        try:
            request = await self._read(reader, peer)
            if request is None:
                graceful = True
                return HandlerOutcome(state="aborted", exit_status=EXIT_ABORTED, peer=peer)

            snapshot = self.store.current()
            if not snapshot.permits(request.command_name, request.command_line):
                graceful = await self._reject(writer, request, peer)
                return HandlerOutcome(
                    state="rejected",
                    exit_status=EXIT_REJECTED,
                    peer=peer,
                    command_name=request.command_name,
                )

            logger.info(f"Running command: {request.command_line}")
            result = await self.runner(request.command_line, self.command_timeout)

            graceful = await self._write(writer, result.payload, peer)
            if not graceful:
                return HandlerOutcome(
                    state="aborted",
                    exit_status=EXIT_ABORTED,
                    peer=peer,
                    command_name=request.command_name,
                    timed_out=result.timed_out,
                )
            return HandlerOutcome(
                state="responded",
                exit_status=EXIT_OK,
                peer=peer,
                command_name=request.command_name,
                timed_out=result.timed_out,
            )
        finally:
            await self._close(writer, graceful)

    async def _read(self, reader: asyncio.StreamReader, peer: str) -> ConnectionRequest | None:
        """Read the request line, or None if the connection was aborted."""
        try:
            data = await asyncio.wait_for(reader.readline(), timeout=self.connection_timeout)
        except asyncio.TimeoutError:
            logger.info(f"Connection from {peer} timed out waiting for a command")
            return None
        except ValueError:
            # StreamReader limit exceeded before a line ending arrived
            logger.info(f"Request from {peer} exceeds the maximum line length")
            return None
        except ConnectionError as e:
            logger.debug(f"Connection from {peer} aborted while reading: {e}")
            return None

        if not data:
            logger.debug(f"Connection from {peer} closed without a command")
            return None

        return parse_request(data)

    async def _reject(
        self,
        writer: asyncio.StreamWriter,
        request: ConnectionRequest,
        peer: str,
    ) -> bool:
        msg = rejection_message(request.command_name)
        logger.warning(msg)
        logger.warning(f"Requested: {request.raw.rstrip(CRLF)!r}")
        return await self._write(writer, (msg + CRLF).encode("utf-8", errors="surrogateescape"), peer)

    async def _write(self, writer: asyncio.StreamWriter, data: bytes, peer: str) -> bool:
        """Send the response within the connection timeout. Returns False if it was not delivered."""
        try:
            writer.write(data)
            await asyncio.wait_for(writer.drain(), timeout=self.connection_timeout)
        except asyncio.TimeoutError:
            logger.info(f"Client {peer} did not read the response within {self.connection_timeout} seconds")
            return False
        except ConnectionError as e:
            logger.debug(f"Client {peer} went away before the response was sent: {e}")
            return False
        return True

    async def _close(self, writer: asyncio.StreamWriter, graceful: bool) -> None:
        if not graceful:
            writer.transport.abort()
            return
        writer.close()
        try:
            await asyncio.wait_for(writer.wait_closed(), timeout=CLOSE_GRACE_SECONDS)
        except asyncio.TimeoutError:
            writer.transport.abort()
        except ConnectionError:
            pass
