"""
Unit tests for the repository layout (snapkeeper/backup/repository.py).

Uses the hardlink backend on a real temporary directory.
"""

import os
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from snapkeeper.backup.backends import HardlinkBackend
from snapkeeper.backup.errors import BackendError, RepositoryError, SnapshotExistsError
from snapkeeper.backup.naming import Tier
from snapkeeper.backup.repository import Repository
from snapkeeper.backup.timestamps import EpochTimestamp, IsoTimestamp


NOW = datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def repository(repo_root):
    return Repository(repo_root, HardlinkBackend(repo_root), EpochTimestamp)


class TestRepositoryPrepare:

    def test_prepare_creates_layout(self, repository, repo_root):
        repository.prepare()

        assert (repo_root / 'current').is_dir()
        assert (repo_root / '.trash').is_dir()
        assert not os.path.lexists(repo_root / 'last')

    def test_prepare_keeps_existing_mirror(self, repository, repo_root):
        (repo_root / 'current').mkdir()
        (repo_root / 'current' / 'data.txt').write_text('keep')

        repository.prepare()

        assert (repo_root / 'current' / 'data.txt').read_text() == 'keep'

    def test_prepare_repairs_dangling_pointer(self, repository, repo_root, make_snapshot_dir):
        older = make_snapshot_dir('L', NOW - timedelta(days=2))
        make_snapshot_dir('S', NOW - timedelta(days=3))
        os.symlink('S_999', repo_root / 'last')

        repository.prepare()

        assert os.readlink(repo_root / 'last') == older.name

    def test_prepare_removes_dangling_pointer_without_snapshots(self, repository, repo_root):
        os.symlink('S_999', repo_root / 'last')

        repository.prepare()

        assert not os.path.lexists(repo_root / 'last')


class TestRepositoryVerify:

    def test_verify_accepts_matching_names(self, repository, make_snapshot_dir):
        make_snapshot_dir('L', NOW)

        repository.verify()

    def test_verify_rejects_other_timestamp_format(self, repository, make_snapshot_dir):
        make_snapshot_dir('L', NOW, timestamp_cls=IsoTimestamp)

        with pytest.raises(RepositoryError, match='timestamp format'):
            repository.verify()


class TestRepositoryCommit:

    def test_commit_creates_snapshot_and_pointer(self, repository, repo_root):
        repository.prepare()
        (repo_root / 'current' / 'data.txt').write_text('v1')

        snapshot = repository.commit(Tier.LONG, NOW)

        assert snapshot.name == f'L_{int(NOW.timestamp())}'
        assert (snapshot.path / 'data.txt').read_text() == 'v1'
        assert os.readlink(repo_root / 'last') == snapshot.name
        assert repository.last_snapshot() == snapshot

    def test_mirror_recreated_on_next_prepare(self, repository, repo_root):
        repository.prepare()
        repository.commit(Tier.SHORT, NOW)

        assert not (repo_root / 'current').exists()

        repository.prepare()

        assert (repo_root / 'current').is_dir()
        assert list((repo_root / 'current').iterdir()) == []

    def test_commit_same_timestamp_is_rejected(self, repository, repo_root):
        repository.prepare()
        first = repository.commit(Tier.SHORT, NOW)
        repository.prepare()

        with pytest.raises(SnapshotExistsError):
            repository.commit(Tier.SHORT, NOW)

        assert first.path.is_dir()
        assert os.readlink(repo_root / 'last') == first.name

    def test_pointer_moves_to_newest(self, repository, repo_root):
        repository.prepare()
        repository.commit(Tier.LONG, NOW)
        repository.prepare()
        second = repository.commit(Tier.SHORT, NOW + timedelta(hours=1))

        assert os.readlink(repo_root / 'last') == second.name
        assert repository.link_dest() == repo_root / 'last'

    def test_link_dest_without_snapshots(self, repository):
        repository.prepare()

        assert repository.link_dest() is None


class TestRepositoryListing:

    def test_lists_both_tiers_by_timestamp(self, repository, make_snapshot_dir):
        short_new = make_snapshot_dir('S', NOW - timedelta(days=1))
        long_new = make_snapshot_dir('L', NOW - timedelta(days=10))
        short_old = make_snapshot_dir('S', NOW - timedelta(days=2))
        long_old = make_snapshot_dir('L', NOW - timedelta(days=40))

        snapshots = repository.list_snapshots()

        assert [snap.name for snap in snapshots] == [long_old.name, long_new.name, short_old.name, short_new.name]

    def test_interleaved_tiers(self, repository, make_snapshot_dir):
        first = make_snapshot_dir('S', NOW - timedelta(days=3))
        second = make_snapshot_dir('L', NOW - timedelta(days=2))
        third = make_snapshot_dir('S', NOW - timedelta(days=1))

        snapshots = repository.list_snapshots()

        assert [snap.name for snap in snapshots] == [first.name, second.name, third.name]
        assert [snap.tier for snap in repository.list_snapshots(Tier.LONG)] == [Tier.LONG]

    def test_get_snapshot(self, repository, repo_root):
        snapshot = repository.get_snapshot('S_100')

        assert snapshot.tier is Tier.SHORT
        assert snapshot.path == repo_root / 'S_100'

    @pytest.mark.parametrize('name', ['current', 'S_abc', 'L_1/../x'])
    def test_get_snapshot_rejects_other_names(self, repository, name):
        with pytest.raises(RepositoryError):
            repository.get_snapshot(name)


class TestRepositoryDelete:

    def test_delete_pointer_target_repoints(self, repository, repo_root, make_snapshot_dir):
        older = make_snapshot_dir('S', NOW - timedelta(days=2))
        newest = make_snapshot_dir('S', NOW - timedelta(days=1))
        os.symlink(newest.name, repo_root / 'last')

        repository.delete(repository.get_snapshot(newest.name))

        assert not newest.exists()
        assert os.readlink(repo_root / 'last') == older.name

    def test_delete_last_snapshot_removes_pointer(self, repository, repo_root, make_snapshot_dir):
        only = make_snapshot_dir('L', NOW)
        os.symlink(only.name, repo_root / 'last')

        repository.delete(repository.get_snapshot(only.name))

        assert not os.path.lexists(repo_root / 'last')

    def test_delete_missing_is_noop(self, repository):
        repository.prepare()

        repository.delete(repository.get_snapshot('S_12345'))

    def test_interrupted_delete_is_never_listed(self, repository, repo_root, make_snapshot_dir):
        doomed = make_snapshot_dir('S', NOW - timedelta(days=40))
        repository.prepare()

        with patch('snapkeeper.backup.backends.shutil.rmtree', side_effect=OSError('disk error')):
            with pytest.raises(BackendError):
                repository.delete(repository.get_snapshot(doomed.name))

        assert repository.list_snapshots() == []

        repository.prepare()

        assert list((repo_root / '.trash').iterdir()) == []
