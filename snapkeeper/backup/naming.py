"""
Snapshot naming and listing.

Snapshot names encode tier and timestamp as <TierPrefix>_<Timestamp>:
- L_<ts>: long-lived snapshots
- S_<ts>: short-lived snapshots
"""

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional

from .timestamps import SnapshotTimestamp


class SnapshotNameError(ValueError):
    """Raised when a tier-prefixed entry has an unparseable timestamp."""
    pass


class Tier(Enum):
    LONG = 'L'
    SHORT = 'S'

    @property
    def prefix(self) -> str:
        return f'{self.value}_'

    @property
    def label(self) -> str:
        return self.name.lower()


@dataclass(frozen=True)
class Snapshot:
    """A read-only snapshot inside a repository."""
    tier: Tier
    timestamp: SnapshotTimestamp
    path: Path

    @property
    def name(self) -> str:
        return snapshot_name(self.tier, self.timestamp)


def snapshot_name(tier: Tier, timestamp: SnapshotTimestamp) -> str:
    return f'{tier.prefix}{timestamp}'


def parse_snapshot_name(name: str, timestamp_cls) -> Optional[tuple]:
    """
    Split a directory entry name into (tier, timestamp).

    Args:
        name: Entry name, e.g. 'L_1700000000'
        timestamp_cls: Timestamp type used by the repository

    Returns:
        (Tier, SnapshotTimestamp), or None if the name carries no tier prefix

    Raises:
        SnapshotNameError: If the prefix matches but the timestamp does not
            parse in the repository's representation
    """
    for tier in Tier:
        if name.startswith(tier.prefix):
            suffix = name[len(tier.prefix):]
            try:
                return tier, timestamp_cls.parse(suffix)
            except ValueError as e:
                raise SnapshotNameError(
                    f"Snapshot entry {name!r} does not use the "
                    f"{timestamp_cls.format_name} timestamp format: {e}"
                )
    return None


def list_snapshots(root, tier: Tier, timestamp_cls) -> List[Snapshot]:
    """
    List the snapshots of one tier, oldest first.

    Only immediate children of root are considered. Ordering comes from the
    parsed timestamps, never from directory-entry order.

    Raises:
        SnapshotNameError: If an entry of this tier is malformed
    """
    root = Path(root)
    if not root.is_dir():
        return []

    snapshots = []
    for entry in os.scandir(root):
        if not entry.name.startswith(tier.prefix):
            continue
        _, timestamp = parse_snapshot_name(entry.name, timestamp_cls)
        snapshots.append(Snapshot(tier=tier, timestamp=timestamp, path=root / entry.name))

    snapshots.sort(key=lambda snap: snap.timestamp)
    return snapshots
