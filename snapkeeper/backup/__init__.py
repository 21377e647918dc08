"""
Backup module for snapkeeper.

This module handles the snapshot lifecycle:
- Snapshot backends (btrfs and hardlink fallback)
- Repository layout and snapshot naming
- Retention policy enforcement
- Source synchronization (rsync)
- Execution orchestration
"""

from .executor import BackupExecutor
from .backends import BtrfsBackend, HardlinkBackend, create_backend
from .repository import Repository
from .retention import RetentionManager, RetentionPolicy
from .sync import RsyncTransfer

__all__ = [
    'BackupExecutor',
    'BtrfsBackend',
    'HardlinkBackend',
    'create_backend',
    'Repository',
    'RetentionManager',
    'RetentionPolicy',
    'RsyncTransfer'
]
