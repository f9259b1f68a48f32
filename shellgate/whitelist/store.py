"""Whitelist store with atomically swapped snapshots."""

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from loguru import logger

from shellgate.config.loader import ConfigError, extract_allowed_commands, read_config_file


def normalize_command_line(line: str) -> str:
    """Collapse whitespace runs so full-line entries match regardless of spacing."""
    return " ".join(line.split())


@dataclass(frozen=True)
class WhitelistSnapshot:
    """An immutable point-in-time copy of the whitelist."""
    commands: frozenset[str]
    generation: int = 0
    source: Path | None = None
    loaded_at: float = field(default_factory=time.time)

    def __contains__(self, name: object) -> bool:
        return name in self.commands

    def __len__(self) -> int:
        return len(self.commands)

    def permits(self, command_name: str | None, command_line: str = "") -> bool:
        """
        Check whether a request may run.

        A request is permitted when its command name is whitelisted, or when
        the whole command line is a whitelisted entry (e.g. "sleep 10").
        """
        if not command_name:
            return False
        if command_name in self.commands:
            return True
        return normalize_command_line(command_line) in self.commands


def build_snapshot(
    commands: Iterable[str],
    generation: int = 0,
    source: Path | None = None,
) -> WhitelistSnapshot:
    """Build a snapshot from command entries."""
    entries = frozenset(normalize_command_line(c) for c in commands if c.strip())
    return WhitelistSnapshot(commands=entries, generation=generation, source=source)


class WhitelistStore:
    """
    Holds the current whitelist snapshot.

    Snapshots are never mutated; reload builds a new one and replaces the
    reference in a single assignment, so readers never need a lock. Only the
    control plane writes.
    """

    def __init__(self, snapshot: WhitelistSnapshot | None = None):
        self._snapshot = snapshot or build_snapshot(())

    @classmethod
    def from_file(cls, config_path: Path) -> "WhitelistStore":
        """Create a store with the whitelist loaded from a config file."""
        store = cls()
        store.reload(config_path)
        return store

    def load(self, config_path: Path) -> WhitelistSnapshot:
        """
        Load a snapshot from a config file without installing it.

        Raises ConfigError if the file is unreadable, malformed, or lacks a
        valid allowed_commands list.
        """
        data = read_config_file(config_path)
        commands = extract_allowed_commands(data)
        return build_snapshot(
            commands,
            generation=self._snapshot.generation + 1,
            source=Path(config_path),
        )

    def current(self) -> WhitelistSnapshot:
        """Return the latest snapshot."""
        return self._snapshot

    def replace(self, snapshot: WhitelistSnapshot) -> None:
        """Install a snapshot."""
        self._snapshot = snapshot

    def reload(self, config_path: Path) -> WhitelistSnapshot:
        """
        Load a new snapshot and swap it in.

        On failure the previous snapshot stays in effect and ConfigError is
        re-raised to the caller.
        """
        try:
            snapshot = self.load(config_path)
        except ConfigError as e:
            logger.error(f"Whitelist reload failed, keeping generation {self._snapshot.generation}: {e}")
            raise

        self.replace(snapshot)
        logger.info(
            f"Allowed commands list reloaded: {len(snapshot)} entries "
            f"(generation {snapshot.generation})"
        )
        return snapshot
