"""PID marker enforcing a single running instance."""

import os
from pathlib import Path

from filelock import FileLock
from loguru import logger


class AlreadyRunningError(Exception):
    """Raised when a PID marker from another instance exists."""

    def __init__(self, path: Path, pid: int | None):
        self.path = path
        self.pid = pid
        super().__init__(
            f"Cannot run as a daemon - previous process still running, PID: {pid} ({path})"
        )


class PidFile:
    """
    A file holding the daemon's process id.

    Existence alone means "an instance may already be running"; stale markers
    are not cleaned up automatically.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._owned = False

    @property
    def _lock(self) -> FileLock:
        return FileLock(self.path.with_name(self.path.name + ".lock"), timeout=10)

    def read_pid(self) -> int | None:
        """Return the recorded pid, or None if there is no readable marker."""
        try:
            return int(self.path.read_text().strip())
        except (OSError, ValueError):
            return None

    def check(self) -> None:
        """Raise AlreadyRunningError if a marker exists."""
        if self.path.exists():
            raise AlreadyRunningError(self.path, self.read_pid())

    def acquire(self, pid: int | None = None) -> None:
        """Create the marker for this process, refusing if one exists."""
        pid = pid or os.getpid()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            self.check()
            self.path.write_text(f"{pid}\n")
        self._owned = True
        logger.debug(f"Wrote PID {pid} to {self.path}")

    def release(self) -> None:
        """Remove the marker if this process created it."""
        if not self._owned:
            return
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        self._owned = False
        logger.debug(f"Removed PID file {self.path}")

    def is_alive(self) -> bool:
        """Check whether the recorded process exists."""
        pid = self.read_pid()
        if pid is None:
            return False
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            return True
        return True
