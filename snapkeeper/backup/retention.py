"""
Retention policy enforcement for snapshots.

Two tiers:
- Long-lived: at most one per max_age window, the newest max_long_count kept
- Short-lived: deleted once older than max_age, independent of count
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Dict, Any

from .errors import SnapkeeperError
from .naming import Snapshot, Tier
from .timestamps import EPOCH_ZERO


@dataclass(frozen=True)
class RetentionPolicy:
    """
    Tier classification and pruning rules.

    A max_long_count of 0 disables long-lived snapshots and retires all
    existing ones.
    """
    max_long_count: int
    max_age: timedelta

    def classify(self, long_snapshots: List[Snapshot], now: datetime) -> Tier:
        """
        Decide the tier of a snapshot taken at now.

        Args:
            long_snapshots: Existing long-lived snapshots, oldest first
            now: Time of the new snapshot
        """
        if self.max_long_count <= 0:
            return Tier.SHORT

        if long_snapshots:
            last_long = long_snapshots[-1].timestamp.to_datetime()
        else:
            last_long = EPOCH_ZERO

        if now - last_long >= self.max_age:
            return Tier.LONG
        return Tier.SHORT

    def select_expired(
        self,
        long_snapshots: List[Snapshot],
        short_snapshots: List[Snapshot],
        now: datetime
    ) -> List[Snapshot]:
        """
        Select snapshots eligible for deletion.

        Args:
            long_snapshots: Long-lived snapshots, oldest first
            short_snapshots: Short-lived snapshots, oldest first
            now: Reference time for age calculation

        Returns:
            Eligible snapshots, long tier first
        """
        keep_count = max(self.max_long_count, 0)
        if keep_count:
            expired = list(long_snapshots[:-keep_count])
        else:
            expired = list(long_snapshots)

        # Boundary is inclusive: exactly max_age old is expired
        expired.extend(
            snap for snap in short_snapshots
            if now - snap.timestamp.to_datetime() >= self.max_age
        )
        return expired


class RetentionManager:
    """
    Applies a RetentionPolicy to a repository.

    Every eligible deletion is attempted; failures are collected instead of
    stopping at the first one.
    """

    def __init__(self, repository, policy: RetentionPolicy, log=None):
        """
        Initialize retention manager.

        Args:
            repository: Repository to prune
            policy: Retention rules
            log: Optional callable receiving one message per event
        """
        self.repository = repository
        self.policy = policy
        self.logs = []
        self._log_callback = log

    def classify(self, now: datetime) -> Tier:
        return self.policy.classify(self.repository.list_snapshots(Tier.LONG), now)

    def enforce(self, now: datetime) -> Dict[str, Any]:
        """
        Delete every snapshot the policy marks as expired.

        Returns:
            Dict with summary of cleanup operations:
            {
                'long_deleted': int,
                'short_deleted': int,
                'deleted': List[str],
                'errors': List[str],
                'logs': List[str]
            }
        """
        long_snapshots = self.repository.list_snapshots(Tier.LONG)
        short_snapshots = self.repository.list_snapshots(Tier.SHORT)

        expired = self.policy.select_expired(
            long_snapshots,
            short_snapshots,
            now
        )

        summary = {
            'long_deleted': 0,
            'short_deleted': 0,
            'deleted': [],
            'errors': []
        }

        for snapshot in expired:
            try:
                self.repository.delete(snapshot)
            except (SnapkeeperError, OSError) as e:
                error_msg = f"{snapshot.name}: {e}"
                self._log(f"Failed to delete snapshot {error_msg}")
                summary['errors'].append(error_msg)
                continue

            summary['deleted'].append(snapshot.name)
            summary[f'{snapshot.tier.label}_deleted'] += 1
            self._log(f"Deleted {snapshot.tier.label} snapshot: {snapshot.name}")

        self._log(
            f"Retention complete. "
            f"Long deleted: {summary['long_deleted']}, "
            f"Short deleted: {summary['short_deleted']}, "
            f"Errors: {len(summary['errors'])}"
        )

        summary['logs'] = self.logs
        return summary

    def _log(self, message: str):
        self.logs.append(message)
        if self._log_callback:
            self._log_callback(message)
