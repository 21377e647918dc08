"""
Backup executor - orchestrates one backup cycle.

Workflow:
1. Create BackupHistory record (status: running)
2. Verify and prepare the repository (working mirror, trash bin, last pointer)
3. Synchronize every source into the working mirror
4. Classify and commit the new snapshot, update the last pointer
5. Prune expired snapshots
6. Update BackupHistory (status: success/failed)

Steps that completed are never rolled back: a failure aborts the rest of the
cycle but keeps every snapshot already committed.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from flask import current_app

from snapkeeper import db
from snapkeeper.models import BackupProfile, BackupHistory
from .backends import create_backend
from .errors import BackupError, ConfigurationError, PruneError, SnapkeeperError, TransferError, TransferTimeout
from .naming import Snapshot
from .profile import ProfileConfig, source_target_name
from .repository import Repository
from .retention import RetentionManager
from .sync import RsyncTransfer


logger = logging.getLogger(__name__)


def _utcnow():
    return datetime.now(timezone.utc)


def open_repository(config: ProfileConfig) -> Repository:
    """Build the repository for a profile with its configured backend."""
    backend = create_backend(config.backend, config.repository_path)
    return Repository(config.repository_path, backend, config.timestamp_cls)


class BackupExecutor:
    """
    Runs the backup cycle for a profile.
    """

    def __init__(self, profile: BackupProfile):
        """
        Initialize backup executor.

        Args:
            profile: BackupProfile instance to execute
        """
        self.profile = profile
        self.config = None
        self.repository = None
        self.history_record = None
        self.logs = []

    def execute(self, timeout: Optional[float] = None) -> BackupHistory:
        """
        Execute one backup cycle.

        Args:
            timeout: Seconds allowed for all transfers; falls back to the
                profile's timeout, then DEFAULT_SYNC_TIMEOUT

        Returns:
            BackupHistory record with execution results
        """
        self.history_record = BackupHistory(
            profile_id=self.profile.id,
            status='running',
            started_at=_utcnow().replace(tzinfo=None)
        )
        db.session.add(self.history_record)
        db.session.commit()

        self._log(f"Starting backup cycle for profile: {self.profile.name}")

        try:
            self._execute_workflow(timeout)

            self.history_record.status = 'success'
            self._log("Backup cycle completed successfully")

        except SnapkeeperError as e:
            self.history_record.status = 'failed'
            self.history_record.error_category = e.category
            self.history_record.error_message = str(e)
            self._log(f"Backup cycle failed ({e.category}): {e}", level=logging.ERROR)

        except Exception as e:
            logger.exception(f"Unexpected error in backup cycle for {self.profile.name}")
            self.history_record.status = 'failed'
            self.history_record.error_category = SnapkeeperError.category
            self.history_record.error_message = str(e)
            self._log(f"Backup cycle failed: {e}", level=logging.ERROR)

        finally:
            self.history_record.completed_at = _utcnow().replace(tzinfo=None)
            self.history_record.logs = '\n'.join(self.logs)
            db.session.commit()

        return self.history_record

    def _execute_workflow(self, timeout: Optional[float]):
        """Execute the main backup workflow steps."""
        # Step 1: Freeze configuration
        self.config = ProfileConfig.from_profile(self.profile)
        if timeout is None:
            timeout = self.config.timeout_seconds
        elif timeout <= 0:
            raise ConfigurationError(f"Timeout must be positive, got {timeout}")
        if timeout is None:
            # DEFAULT_SYNC_TIMEOUT of 0 means no limit
            timeout = current_app.config.get('DEFAULT_SYNC_TIMEOUT') or None
        deadline = time.monotonic() + timeout if timeout is not None else None

        # Step 2: Repository preconditions
        self.repository = open_repository(self.config)
        self.repository.verify()
        self._log(f"Repository verified: {self.repository.root} (backend: {self.config.backend})")
        self.repository.prepare()
        self._flush_logs_to_db()

        # Step 3: Synchronize sources
        succeeded, failed = self._transfer_sources(deadline)
        self.history_record.sources_succeeded = len(succeeded)
        self.history_record.sources_failed = len(failed)
        self._flush_logs_to_db()

        if not succeeded:
            raise BackupError(
                f"All {len(failed)} source(s) failed for profile {self.config.name}; "
                f"no snapshot taken, working mirror left in place"
            )

        # Step 4: Commit snapshot
        now = _utcnow()
        retention = RetentionManager(self.repository, self.config.retention_policy, log=self._log)
        tier = retention.classify(now)
        snapshot = self.repository.commit(tier, now)
        self.history_record.snapshot_name = snapshot.name
        self.history_record.snapshot_tier = tier.label
        self._log(f"Created {tier.label} snapshot: {snapshot.name}")
        self._flush_logs_to_db()

        # Step 5: Prune
        summary = retention.enforce(now)
        self.history_record.deleted_snapshots = '\n'.join(summary['deleted']) or None
        if summary['errors']:
            raise PruneError(summary['errors'])

    def _transfer_sources(self, deadline: Optional[float]) -> Tuple[List[str], List[str]]:
        """
        Synchronize each source into the working mirror.

        A source failing does not stop the others. A timeout cancels the
        whole cycle.

        Returns:
            (succeeded sources, failed sources)

        Raises:
            TransferTimeout: If the deadline passes
        """
        transfer = RsyncTransfer(
            remote=self.config.remote,
            credential=self.config.credential,
            exclude_patterns=list(self.config.exclude_patterns),
            preserve_permissions=self.config.preserve_permissions,
            rsync_binary=current_app.config.get('RSYNC_BINARY', 'rsync')
        )
        link_root = self.repository.link_dest()

        succeeded = []
        failed = []

        for source in self.config.sources:
            target = source_target_name(source)
            link_dest = None
            if link_root is not None and (link_root / target).is_dir():
                link_dest = link_root / target

            remaining = deadline - time.monotonic() if deadline is not None else None

            self._log(f"Synchronizing {source} into {target}")
            try:
                transfer.transfer(source, self.repository.mirror / target, link_dest, remaining)
            except TransferTimeout:
                raise
            except TransferError as e:
                failed.append(source)
                self._log(f"Source {source} failed: {e}", level=logging.WARNING)
                continue

            succeeded.append(source)
            self._log(f"Source {source} synchronized")

        return succeeded, failed

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
            level: logging level for the application log
        """
        timestamp = _utcnow().strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        logger.log(level, f"[{self.profile.name}] {message}")

    def _flush_logs_to_db(self):
        """Flush accumulated logs to database for real-time visibility."""
        if self.history_record:
            self.history_record.logs = '\n'.join(self.logs)
            db.session.commit()


def get_profile(profile_name: str) -> BackupProfile:
    """
    Look up a profile by name.

    Raises:
        ValueError: If profile not found
    """
    profile = BackupProfile.query.filter_by(name=profile_name).first()
    if not profile:
        raise ValueError(f"Backup profile not found: {profile_name}")
    return profile


def execute_backup_profile(profile_id: int, allow_disabled: bool = False,
                           timeout: Optional[float] = None) -> BackupHistory:
    """
    Execute a backup cycle for a profile by ID.

    Args:
        profile_id: ID of BackupProfile to execute
        allow_disabled: If True, allow execution of disabled profiles (for manual runs)
        timeout: Optional transfer deadline in seconds

    Returns:
        BackupHistory record with execution results

    Raises:
        ValueError: If profile not found, or if disabled and not allowed
    """
    profile = db.session.get(BackupProfile, profile_id)

    if not profile:
        raise ValueError(f"Backup profile not found: {profile_id}")

    if not profile.enabled and not allow_disabled:
        raise ValueError(f"Backup profile is disabled: {profile.name}")

    executor = BackupExecutor(profile)
    return executor.execute(timeout=timeout)


def list_profile_snapshots(profile: BackupProfile) -> Tuple[Repository, List[Snapshot]]:
    """
    List a profile's snapshots without modifying the repository.

    Raises:
        ConfigurationError, RepositoryError
    """
    repository = open_repository(ProfileConfig.from_profile(profile))
    return repository, repository.list_snapshots()


def prune_profile(profile: BackupProfile) -> Dict[str, Any]:
    """
    Apply the retention policy without taking a snapshot.

    Raises:
        PruneError: After all deletions were attempted, if any failed
    """
    config = ProfileConfig.from_profile(profile)
    repository = open_repository(config)
    repository.verify()
    repository.prepare()

    retention = RetentionManager(repository, config.retention_policy, log=logger.info)
    summary = retention.enforce(_utcnow())
    if summary['errors']:
        raise PruneError(summary['errors'])
    return summary


def delete_profile_snapshot(profile: BackupProfile, snapshot_name: str) -> Snapshot:
    """
    Operator-initiated deletion of one snapshot. Missing snapshots are a no-op.
    """
    config = ProfileConfig.from_profile(profile)
    repository = open_repository(config)
    repository.verify()
    repository.prepare()

    snapshot = repository.get_snapshot(snapshot_name)
    repository.delete(snapshot)
    logger.info(f"[{profile.name}] Deleted {snapshot.tier.label} snapshot: {snapshot.name}")
    return snapshot
