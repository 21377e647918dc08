"""
Unit tests for snapshot naming and listing (snapkeeper/backup/naming.py).
"""

import os
from unittest.mock import patch

import pytest

from snapkeeper.backup.naming import (
    Snapshot,
    SnapshotNameError,
    Tier,
    list_snapshots,
    parse_snapshot_name,
    snapshot_name
)
from snapkeeper.backup.timestamps import EpochTimestamp, IsoTimestamp


class TestSnapshotNames:

    def test_snapshot_name_format(self):
        assert snapshot_name(Tier.LONG, EpochTimestamp(1700000000)) == 'L_1700000000'
        assert snapshot_name(Tier.SHORT, IsoTimestamp('2024-01-15T00:00:00Z')) == 'S_2024-01-15T00:00:00Z'

    def test_parse_snapshot_name(self):
        tier, ts = parse_snapshot_name('S_42', EpochTimestamp)

        assert tier is Tier.SHORT
        assert ts == EpochTimestamp(42)

    def test_parse_ignores_other_entries(self):
        assert parse_snapshot_name('current', EpochTimestamp) is None
        assert parse_snapshot_name('.trash', EpochTimestamp) is None
        assert parse_snapshot_name('last', EpochTimestamp) is None

    def test_parse_rejects_wrong_representation(self):
        with pytest.raises(SnapshotNameError, match='epoch'):
            parse_snapshot_name('L_2024-01-15T00:00:00Z', EpochTimestamp)

    def test_snapshot_name_property(self, tmp_path):
        snap = Snapshot(tier=Tier.LONG, timestamp=EpochTimestamp(7), path=tmp_path / 'L_7')

        assert snap.name == 'L_7'


class TestListSnapshots:

    def test_sorted_by_timestamp(self, tmp_path):
        for name in ['S_300', 'S_20', 'S_100']:
            (tmp_path / name).mkdir()

        names = [snap.name for snap in list_snapshots(tmp_path, Tier.SHORT, EpochTimestamp)]

        assert names == ['S_20', 'S_100', 'S_300']

    def test_order_independent_of_directory_order(self, tmp_path):
        """Directory entries come back in reverse; listing is still ascending."""
        for name in ['L_1', 'L_2', 'L_3']:
            (tmp_path / name).mkdir()

        real_scandir = os.scandir

        def reversed_scandir(path):
            return iter(sorted(real_scandir(path), key=lambda entry: entry.name, reverse=True))

        with patch('snapkeeper.backup.naming.os.scandir', side_effect=reversed_scandir):
            names = [snap.name for snap in list_snapshots(tmp_path, Tier.LONG, EpochTimestamp)]

        assert names == ['L_1', 'L_2', 'L_3']

    def test_filters_by_tier(self, tmp_path):
        for name in ['L_1', 'S_2', 'current', '.trash']:
            (tmp_path / name).mkdir()

        long_names = [snap.name for snap in list_snapshots(tmp_path, Tier.LONG, EpochTimestamp)]
        short_names = [snap.name for snap in list_snapshots(tmp_path, Tier.SHORT, EpochTimestamp)]

        assert long_names == ['L_1']
        assert short_names == ['S_2']

    def test_snapshot_paths(self, tmp_path):
        (tmp_path / 'L_5').mkdir()

        [snap] = list_snapshots(tmp_path, Tier.LONG, EpochTimestamp)

        assert snap.path == tmp_path / 'L_5'
        assert snap.tier is Tier.LONG

    def test_missing_root(self, tmp_path):
        assert list_snapshots(tmp_path / 'missing', Tier.LONG, EpochTimestamp) == []

    def test_mismatched_entry_raises(self, tmp_path):
        (tmp_path / 'S_1').mkdir()
        (tmp_path / 'S_2024-01-15T00:00:00Z').mkdir()

        with pytest.raises(SnapshotNameError):
            list_snapshots(tmp_path, Tier.SHORT, EpochTimestamp)
