"""Whitelist of commands permitted to run."""

from shellgate.whitelist.store import WhitelistSnapshot, WhitelistStore

__all__ = ["WhitelistSnapshot", "WhitelistStore"]
