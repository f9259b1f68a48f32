"""Process lifecycle and signal handling."""

from shellgate.control.pidfile import AlreadyRunningError, PidFile
from shellgate.control.daemon import DaemonError, become_daemon
from shellgate.control.plane import ControlPlane

__all__ = ["AlreadyRunningError", "DaemonError", "PidFile", "become_daemon", "ControlPlane"]
