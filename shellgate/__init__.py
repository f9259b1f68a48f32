"""shellgate - a restricted remote-command server."""

__version__ = "0.1.0"
__logo__ = "🔒"
