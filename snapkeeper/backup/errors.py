"""
Error categories surfaced to the operator.

Every fatal condition maps to one category, recorded on the backup history
and turned into the exit status by the CLI.
"""


class SnapkeeperError(Exception):
    """Base class for categorized backup failures."""
    category = 'unexpected'


class ConfigurationError(SnapkeeperError):
    """Raised when a profile is missing fields or holds invalid values."""
    category = 'configuration'


class RepositoryError(SnapkeeperError):
    """Raised when a repository precondition does not hold."""
    category = 'repository'


class TransferError(SnapkeeperError):
    """Raised when synchronizing a source fails."""
    category = 'transfer'


class TransferTimeout(TransferError):
    """Raised when the cycle deadline expires during a transfer."""
    category = 'timeout'


class BackendError(SnapkeeperError):
    """Raised when a snapshot backend primitive fails."""
    category = 'backend'


class SnapshotExistsError(BackendError):
    """Raised when a snapshot with the same tier and timestamp already exists."""
    pass


class BackupError(SnapkeeperError):
    """Raised when a backup cycle cannot produce a snapshot."""
    category = 'transfer'


class PruneError(SnapkeeperError):
    """Raised after pruning when one or more deletions failed."""
    category = 'pruning'

    def __init__(self, failures):
        self.failures = list(failures)
        details = '; '.join(self.failures)
        super().__init__(f"{len(self.failures)} snapshot deletion(s) failed: {details}")
