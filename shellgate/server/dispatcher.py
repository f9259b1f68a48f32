"""Accept loop handing each connection to its own supervised task."""

import asyncio
import socket
from collections import Counter

from loguru import logger

from shellgate.server.handler import ConnectionHandler
from shellgate.server.types import EXIT_FAILED, HandlerOutcome


class ConnectionDispatcher:
    """
    Accepts TCP connections and runs one handler task per connection.

    The dispatcher never awaits a handler. Each task has its own exception
    boundary, so a crashing or cancelled handler cannot take down the accept
    loop or any other connection. Finished tasks are reaped from the active
    set by a done callback.
    """

    def __init__(
        self,
        handler: ConnectionHandler,
        host: str = "0.0.0.0",
        port: int = 30000,
        backlog: int = 100,
        max_request_bytes: int = 64 * 1024,
        sock: socket.socket | None = None,
    ):
        """
        Initialize the dispatcher.

        Args:
            handler: Handler invoked for every accepted connection.
            host: Host to bind to.
            port: Port to listen on.
            backlog: Size of the OS accept queue.
            max_request_bytes: Longest request line accepted.
            sock: Pre-bound listening socket; host and port are ignored if given.
        """
        self.handler = handler
        self.host = host
        self.port = port
        self.backlog = backlog
        self.max_request_bytes = max_request_bytes
        self._sock = sock
        self._server: asyncio.AbstractServer | None = None
        self._active: set[asyncio.Task] = set()
        self.stats: Counter[str] = Counter()

    @property
    def active_count(self) -> int:
        return len(self._active)

    @property
    def address(self) -> tuple[str, int] | None:
        """Address the listener is bound to."""
        if not self._server or not self._server.sockets:
            return None
        return self._server.sockets[0].getsockname()[:2]

    @property
    def is_serving(self) -> bool:
        return self._server is not None and self._server.is_serving()

    async def start(self) -> None:
        """Bind the listener and start accepting."""
        if self._sock is not None:
            self._server = await asyncio.start_server(
                self._on_connect,
                sock=self._sock,
                backlog=self.backlog,
                limit=self.max_request_bytes,
            )
        else:
            self._server = await asyncio.start_server(
                self._on_connect,
                self.host,
                self.port,
                backlog=self.backlog,
                limit=self.max_request_bytes,
                reuse_address=True,
            )
        host, port = self.address
        logger.info(f"Listening on {host}:{port}")

    async def serve_forever(self) -> None:
        """Accept connections until close() is called."""
        if not self._server:
            await self.start()
        try:
            await self._server.serve_forever()
        except asyncio.CancelledError:
            # close() cancels serve_forever; anything else is a real cancellation
            if self._server.is_serving():
                raise

    def close(self) -> None:
        """Stop accepting and close the listening socket. In-flight handlers keep running."""
        if self._server:
            self._server.close()
            logger.info("Listener closed")

    async def wait_idle(self, timeout: float | None = None) -> bool:
        """Wait for in-flight handlers to finish. Returns True if none remain."""
        if not self._active:
            return True
        _, pending = await asyncio.wait(set(self._active), timeout=timeout)
        return not pending

    async def cancel_all(self) -> int:
        """Cancel every in-flight handler. Returns the number cancelled."""
        tasks = [t for t in self._active if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        return len(tasks)

    def _on_connect(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.stats["accepted"] += 1
        task = asyncio.create_task(self._supervise(reader, writer))
        self._active.add(task)
        task.add_done_callback(self._reap)

    async def _supervise(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> HandlerOutcome:
        try:
            return await self.handler.handle(reader, writer)
        except Exception:
            logger.exception("Connection handler crashed")
            writer.close()
            return HandlerOutcome(state="failed", exit_status=EXIT_FAILED)

    def _reap(self, task: asyncio.Task) -> None:
        self._active.discard(task)
        if task.cancelled():
            self.stats["cancelled"] += 1
            return
        outcome = task.result()
        self.stats[outcome.state] += 1
        logger.debug(
            f"Handler for {outcome.peer} finished: {outcome.state} "
            f"(status {outcome.exit_status})"
        )
