"""Detach the current process from its terminal."""

import os
import sys

from loguru import logger

# PATH value when running as a daemon
DAEMON_PATH = "/bin:/sbin:/usr/bin:/usr/sbin"

DAEMON_UMASK = 0o006


class DaemonError(Exception):
    """Raised when the process cannot switch to daemon mode."""


def become_daemon() -> None:
    """
    Switch to daemon mode.

    Forks and lets the parent exit, leaves the previous process and session
    groups, re-opens the standard streams on /dev/null, sets an explicit
    PATH and resets the umask. Must be called before the event loop starts.

    Raises DaemonError if the platform has no fork or a system call fails.
    """
    if sys.platform == "win32":
        raise DaemonError("Daemon mode is not supported on Windows")

    try:
        pid = os.fork()
    except OSError as e:
        raise DaemonError(f"Cannot fork: {e}") from e
    if pid:
        os._exit(0)

    try:
        os.setsid()

        sys.stdout.flush()
        sys.stderr.flush()
        devnull = os.open(os.devnull, os.O_RDWR)
        os.dup2(devnull, sys.stdin.fileno())
        os.dup2(devnull, sys.stdout.fileno())
        os.dup2(devnull, sys.stderr.fileno())
        if devnull > 2:
            os.close(devnull)
    except OSError as e:
        raise DaemonError(f"Cannot detach from the terminal: {e}") from e

    os.environ["PATH"] = DAEMON_PATH
    os.umask(DAEMON_UMASK)

    logger.info("Running as a daemon")
