"""
On-disk repository layout for a backup profile.

    <root>/current     working mirror, rsync target
    <root>/last        symlink to the most recent snapshot
    <root>/L_<ts>      long-lived snapshots
    <root>/S_<ts>      short-lived snapshots
    <root>/.trash      staging area (hardlink backend only)
"""

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from .backends import SnapshotBackend
from .errors import BackendError, RepositoryError
from .naming import Snapshot, SnapshotNameError, Tier, list_snapshots, parse_snapshot_name, snapshot_name


logger = logging.getLogger(__name__)


class Repository:
    """
    A backup repository built on a snapshot backend.

    The caller guarantees a single running cycle per repository.
    """

    MIRROR_NAME = 'current'
    POINTER_NAME = 'last'

    def __init__(self, root, backend: SnapshotBackend, timestamp_cls):
        self.root = Path(root)
        self.backend = backend
        self.timestamp_cls = timestamp_cls
        self.mirror = self.root / self.MIRROR_NAME
        self.pointer = self.root / self.POINTER_NAME

    def verify(self):
        """
        Check repository preconditions before any mutation.

        Raises:
            RepositoryError: If the backend rejects the root or existing
                snapshot names use another timestamp representation
        """
        self.backend.verify()
        self.list_snapshots()

    def prepare(self):
        """Create the working mirror and backend bookkeeping if absent."""
        self.backend.prepare()
        if not os.path.lexists(self.mirror):
            logger.info(f"Creating working mirror {self.mirror}")
            self.backend.create_volume(self.mirror)
        self._repair_pointer()

    def list_snapshots(self, tier: Optional[Tier] = None) -> List[Snapshot]:
        """
        List snapshots oldest first. With tier None both tiers are merged by
        timestamp.

        Raises:
            RepositoryError: If a snapshot name does not parse
        """
        tiers = [tier] if tier is not None else [Tier.LONG, Tier.SHORT]
        snapshots = []
        try:
            for t in tiers:
                snapshots.extend(list_snapshots(self.root, t, self.timestamp_cls))
        except SnapshotNameError as e:
            raise RepositoryError(str(e))
        if tier is None:
            snapshots.sort(key=lambda snap: snap.timestamp)
        return snapshots

    def get_snapshot(self, name: str) -> Snapshot:
        """
        Build the Snapshot for a name, whether or not it exists on disk.

        Raises:
            RepositoryError: If name is not a snapshot name for this repository
        """
        try:
            parsed = parse_snapshot_name(name, self.timestamp_cls)
        except SnapshotNameError as e:
            raise RepositoryError(str(e))
        if parsed is None or '/' in name:
            raise RepositoryError(f"Not a snapshot name: {name!r}")
        tier, timestamp = parsed
        return Snapshot(tier=tier, timestamp=timestamp, path=self.root / name)

    def last_snapshot(self) -> Optional[Snapshot]:
        """Snapshot referenced by the last pointer, if any."""
        if not os.path.islink(self.pointer):
            return None
        target = os.readlink(self.pointer)
        try:
            snapshot = self.get_snapshot(os.path.basename(target))
        except RepositoryError:
            return None
        if not snapshot.path.exists():
            return None
        return snapshot

    def link_dest(self) -> Optional[Path]:
        """Incremental-copy hint for the synchronization service."""
        return self.backend.link_dest(self.pointer)

    def commit(self, tier: Tier, moment: datetime) -> Snapshot:
        """
        Turn the working mirror into a new snapshot and update the pointer.

        Raises:
            SnapshotExistsError: If the tier/timestamp is already taken
            BackendError: If the backend fails
        """
        timestamp = self.timestamp_cls.from_datetime(moment)
        snapshot = Snapshot(
            tier=tier,
            timestamp=timestamp,
            path=self.root / snapshot_name(tier, timestamp)
        )
        self.backend.snapshot(self.mirror, snapshot.path)
        self._point_to(snapshot)
        return snapshot

    def delete(self, snapshot: Snapshot):
        """
        Delete a snapshot. Deleting a missing snapshot is a no-op.

        If the last pointer referenced it, the pointer moves to the newest
        remaining snapshot or is removed.
        """
        was_last = os.path.islink(self.pointer) and \
            os.path.basename(os.readlink(self.pointer)) == snapshot.name

        self.backend.delete_snapshot(snapshot.path)

        if was_last:
            self._repair_pointer()

    def _point_to(self, snapshot: Snapshot):
        staging = self.root / f'.{self.POINTER_NAME}.tmp'
        try:
            if os.path.lexists(staging):
                os.unlink(staging)
            os.symlink(snapshot.name, staging)
            os.replace(staging, self.pointer)
        except OSError as e:
            raise BackendError(f"Failed to update {self.pointer}: {e}")

    def _repair_pointer(self):
        if not os.path.islink(self.pointer) or self.pointer.exists():
            return

        logger.warning(f"Last pointer {self.pointer} is dangling")
        snapshots = self.list_snapshots()
        if snapshots:
            newest = max(snapshots, key=lambda snap: snap.timestamp)
            self._point_to(newest)
            logger.info(f"Last pointer now references {newest.name}")
        else:
            try:
                os.unlink(self.pointer)
            except OSError as e:
                raise BackendError(f"Failed to remove {self.pointer}: {e}")
