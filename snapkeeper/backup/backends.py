"""
Snapshot backends.

Supports:
- BtrfsBackend: native copy-on-write subvolume snapshots
- HardlinkBackend: fallback for plain filesystems; a snapshot is an atomic
  rename of the working mirror, unchanged files are shared through rsync
  --link-dest, and deletion is staged through a trash directory

The backend is chosen once per repository with create_backend(). Nothing
outside this module looks at the backend kind.
"""

import logging
import os
import shlex
import shutil
import subprocess
from pathlib import Path
from typing import List, Optional

from .errors import BackendError, RepositoryError, SnapshotExistsError


logger = logging.getLogger(__name__)


def run_command(cmd: List[str]) -> str:
    """
    Run a command and return its stdout.

    Raises:
        BackendError: If the command cannot be started or exits non-zero
    """
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, check=False)
    except OSError as e:
        raise BackendError(f"Failed to run {cmd[0]}: {e}")

    if result.returncode != 0:
        raise BackendError(
            f"Command '{shlex.join(cmd)}' exited {result.returncode}: {result.stderr.strip()}"
        )
    return result.stdout


class SnapshotBackend:
    """
    Snapshot primitives for one repository root.

    Subclasses implement verify/create_volume/snapshot/delete_snapshot.
    """

    kind = None

    def __init__(self, root):
        self.root = Path(root)

    def verify(self):
        """
        Check that the repository root suits this backend.

        Raises:
            RepositoryError: If the root cannot be used
        """
        raise NotImplementedError

    def prepare(self):
        """Create backend bookkeeping inside the root. Called at cycle start."""
        pass

    def create_volume(self, path: Path):
        """Create an empty writable volume at path."""
        raise NotImplementedError

    def snapshot(self, src: Path, dst: Path):
        """Produce a read-only point-in-time copy of src at dst."""
        raise NotImplementedError

    def delete_snapshot(self, path: Path):
        """Remove a snapshot. A path that does not exist is a no-op."""
        raise NotImplementedError

    def link_dest(self, pointer: Path) -> Optional[Path]:
        """Directory rsync may hard-link unchanged files against, if any."""
        return None

    def _require_absent(self, dst: Path):
        if os.path.lexists(dst):
            raise SnapshotExistsError(f"Snapshot already exists: {dst}")


class BtrfsBackend(SnapshotBackend):
    """Backend for repositories on btrfs."""

    kind = 'btrfs'

    def verify(self):
        if not self.root.is_dir():
            raise RepositoryError(f"Repository root does not exist: {self.root}")

        try:
            fs_type = run_command(['stat', '--file-system', '--format=%T', str(self.root)]).strip()
        except BackendError as e:
            raise RepositoryError(f"Cannot determine filesystem of {self.root}: {e}")

        if fs_type != 'btrfs':
            raise RepositoryError(
                f"Repository root {self.root} is on {fs_type}, not btrfs"
            )

    def create_volume(self, path: Path):
        run_command(['btrfs', 'subvolume', 'create', str(path)])

    def snapshot(self, src: Path, dst: Path):
        self._require_absent(dst)
        run_command(['btrfs', 'subvolume', 'snapshot', '-r', str(src), str(dst)])

    def delete_snapshot(self, path: Path):
        if not os.path.lexists(path):
            logger.debug(f"Snapshot already gone: {path}")
            return

        # Fails on anything that is not a subvolume
        run_command(['btrfs', 'property', 'set', '-ts', str(path), 'ro', 'false'])
        run_command(['btrfs', 'subvolume', 'delete', str(path)])


class HardlinkBackend(SnapshotBackend):
    """Backend for filesystems without native snapshots."""

    kind = 'hardlink'
    TRASH_NAME = '.trash'

    def __init__(self, root):
        super().__init__(root)
        self.trash = self.root / self.TRASH_NAME

    def verify(self):
        if not self.root.is_dir():
            raise RepositoryError(f"Repository root does not exist: {self.root}")

        root_stat = self.root.stat()
        euid = os.geteuid()
        if euid != 0 and root_stat.st_uid != euid:
            raise RepositoryError(
                f"Repository root {self.root} is owned by uid {root_stat.st_uid}, "
                f"not by the running user (uid {euid})"
            )

        if self.trash.exists() and self.trash.stat().st_dev != root_stat.st_dev:
            raise RepositoryError(
                f"Trash bin {self.trash} is not on the same device as {self.root}"
            )

    def prepare(self):
        try:
            # Leftovers mean a previous delete stopped before emptying the bin
            if self.trash.exists() and any(self.trash.iterdir()):
                logger.warning(f"Discarding leftover trash contents in {self.trash}")
                shutil.rmtree(self.trash)
            self.trash.mkdir(exist_ok=True)
        except OSError as e:
            raise BackendError(f"Failed to prepare trash bin {self.trash}: {e}")

    def create_volume(self, path: Path):
        try:
            Path(path).mkdir()
        except OSError as e:
            raise BackendError(f"Failed to create directory {path}: {e}")

    def snapshot(self, src: Path, dst: Path):
        self._require_absent(dst)
        try:
            os.rename(src, dst)
        except OSError as e:
            raise BackendError(f"Failed to rename {src} to {dst}: {e}")

    def delete_snapshot(self, path: Path):
        path = Path(path)
        if not os.path.lexists(path):
            logger.debug(f"Snapshot already gone: {path}")
            return

        try:
            self.trash.mkdir(exist_ok=True)
            if os.lstat(path).st_dev != self.trash.stat().st_dev:
                raise RepositoryError(
                    f"Trash bin {self.trash} is on a different device than {path}; "
                    f"refusing to move across devices"
                )

            staged = self.trash / path.name
            if os.path.lexists(staged):
                shutil.rmtree(staged)
            os.rename(path, staged)

            shutil.rmtree(self.trash)
            self.trash.mkdir()
        except OSError as e:
            raise BackendError(f"Failed to delete snapshot {path}: {e}")

    def link_dest(self, pointer: Path) -> Optional[Path]:
        if Path(pointer).exists():
            return Path(pointer)
        return None


BACKENDS = {
    BtrfsBackend.kind: BtrfsBackend,
    HardlinkBackend.kind: HardlinkBackend,
}


def create_backend(kind: str, root) -> SnapshotBackend:
    """
    Factory function to create the backend for a repository root.

    Args:
        kind: 'btrfs' or 'hardlink'
        root: Repository root path

    Raises:
        ValueError: If kind is invalid
    """
    try:
        backend_cls = BACKENDS[kind]
    except KeyError:
        raise ValueError(f"Invalid backend: {kind}. Valid options: {sorted(BACKENDS)}")
    return backend_cls(root)
