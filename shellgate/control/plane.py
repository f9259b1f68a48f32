"""Process lifecycle: startup, signals, reload and shutdown."""

import asyncio
import platform
import signal
from pathlib import Path

from loguru import logger

from shellgate.config import ConfigError, ServerConfig
from shellgate.control.daemon import become_daemon
from shellgate.control.pidfile import PidFile
from shellgate.exec import run_trusted
from shellgate.server import ConnectionDispatcher, ConnectionHandler
from shellgate.server.handler import Runner
from shellgate.whitelist import WhitelistStore
from shellgate.whitelist.store import build_snapshot

SHUTDOWN_SIGNALS = ("SIGINT", "SIGTERM", "SIGQUIT")
RELOAD_SIGNAL = "SIGHUP"


class ControlPlane:
    """
    Owns the server process lifecycle.

    Signal handlers only set events; reload and shutdown run in the control
    task, never inside the handler itself.
    """

    def __init__(
        self,
        config: ServerConfig,
        config_path: Path | None = None,
        store: WhitelistStore | None = None,
        runner: Runner = run_trusted,
    ):
        """
        Initialize the control plane.

        Args:
            config: Resolved server configuration.
            config_path: File the whitelist is reloaded from on SIGHUP.
            store: Whitelist store; built from config.allowed_commands if omitted.
            runner: Command runner used by connection handlers.
        """
        self.config = config
        self.config_path = Path(config_path) if config_path else None
        self.store = store or WhitelistStore(
            build_snapshot(config.allowed_commands, source=self.config_path)
        )
        self.handler = ConnectionHandler(
            self.store,
            connection_timeout=config.connection_timeout,
            command_timeout=config.command_timeout,
            runner=runner,
        )
        self.dispatcher = ConnectionDispatcher(
            self.handler,
            host=config.host,
            port=config.port,
            backlog=config.backlog,
            max_request_bytes=config.max_request_bytes,
        )
        self.pidfile = PidFile(config.pid_file)
        self.started = asyncio.Event()
        self._shutdown_event = asyncio.Event()
        self._force_event = asyncio.Event()
        self._reload_event = asyncio.Event()
        self._installed_signals: list[signal.Signals] = []

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    def prepare(self) -> None:
        """Daemonize and write the PID marker if requested. Call before the event loop starts."""
        if not self.config.daemon:
            return
        # Check before forking so the error reaches the terminal
        self.pidfile.check()
        become_daemon()
        self.pidfile.acquire()

    def run_forever(self) -> None:
        """Prepare, serve until a shutdown signal, then clean up."""
        self.prepare()
        try:
            asyncio.run(self.run())
        finally:
            self.pidfile.release()

    async def run(self) -> None:
        """Serve until shutdown is requested."""
        self._install_signal_handlers()
        try:
            await self.dispatcher.start()
            self.started.set()
            await self._control_loop()
            await self._shutdown()
        finally:
            self._remove_signal_handlers()

    # ------------------------------------------------------------------
    # Control requests
    # ------------------------------------------------------------------

    def request_shutdown(self) -> None:
        """Ask the server to stop; a second request cancels in-flight handlers."""
        if self._shutdown_event.is_set():
            self._force_event.set()
        self._shutdown_event.set()

    def request_reload(self) -> None:
        """Ask the server to reload the whitelist."""
        self._reload_event.set()

    def reload(self) -> bool:
        """Reload the whitelist from the config file. Returns True on success."""
        logger.info("Got SIGHUP, reloading allowed commands list . . .")
        if not self.config_path:
            logger.warning("No configuration file to reload from")
            return False
        try:
            self.store.reload(self.config_path)
        except ConfigError as e:
            logger.error(f"Allowed commands list not reloaded, previous list stays active: {e}")
            return False
        return True

    async def _control_loop(self) -> None:
        while not self._shutdown_event.is_set():
            shutdown = asyncio.create_task(self._shutdown_event.wait())
            reload = asyncio.create_task(self._reload_event.wait())
            try:
                await asyncio.wait({shutdown, reload}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                shutdown.cancel()
                reload.cancel()

            if self._reload_event.is_set():
                self._reload_event.clear()
                self.reload()

    async def _shutdown(self) -> None:
        self.dispatcher.close()

        pending = self.dispatcher.active_count
        if pending:
            drain_timeout = self.config.drain_timeout
            logger.info(
                f"Waiting up to {drain_timeout:g}s for {pending} in-flight connection(s) to finish"
            )
            idle = asyncio.create_task(self.dispatcher.wait_idle(drain_timeout))
            force = asyncio.create_task(self._force_event.wait())
            await asyncio.wait({idle, force}, return_when=asyncio.FIRST_COMPLETED)
            force.cancel()
            if not idle.done():
                idle.cancel()
            cancelled = await self.dispatcher.cancel_all()
            if cancelled:
                logger.warning(f"Cancelled {cancelled} in-flight connection(s)")

        logger.info("Bye!")

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    def _install_signal_handlers(self) -> None:
        if platform.system() == "Windows":
            # Windows asyncio doesn't support loop.add_signal_handler
            signal.signal(signal.SIGINT, lambda s, f: self.request_shutdown())
            signal.signal(signal.SIGTERM, lambda s, f: self.request_shutdown())
            return

        loop = asyncio.get_running_loop()
        for name in SHUTDOWN_SIGNALS:
            sig = getattr(signal, name)
            loop.add_signal_handler(sig, self.request_shutdown)
            self._installed_signals.append(sig)

        sig = getattr(signal, RELOAD_SIGNAL)
        loop.add_signal_handler(sig, self.request_reload)
        self._installed_signals.append(sig)

    def _remove_signal_handlers(self) -> None:
        if not self._installed_signals:
            return
        loop = asyncio.get_running_loop()
        for sig in self._installed_signals:
            loop.remove_signal_handler(sig)
        self._installed_signals.clear()
