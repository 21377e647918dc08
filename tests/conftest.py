"""
Shared pytest fixtures for snapkeeper tests.

This module provides fixtures for:
- Flask app, test client and CLI runner
- Database setup with in-memory SQLite
- Backup profile fixtures (hardlink and btrfs)
- Repository directories and snapshot helpers
- A stub for the rsync subprocess
"""

import json
import subprocess
from datetime import timezone
from pathlib import Path
from unittest.mock import patch

import pytest

from snapkeeper import create_app, db as _db
from snapkeeper.models import BackupProfile
from snapkeeper.backup.timestamps import EpochTimestamp


@pytest.fixture(scope='function')
def app():
    """
    Create Flask app with test configuration.

    Uses in-memory SQLite database for fast, isolated tests.
    """
    app = create_app('testing')
    yield app


@pytest.fixture(scope='function')
def db(app):
    """
    Create database with all tables.

    Each test gets a fresh database.
    """
    with app.app_context():
        _db.create_all()
        yield _db
        _db.session.remove()
        _db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Flask test client for making HTTP requests."""
    return app.test_client()


@pytest.fixture(scope='function')
def runner(app):
    """Flask CLI test runner."""
    return app.test_cli_runner()


@pytest.fixture
def credential_file(tmp_path):
    """rsync password file."""
    path = tmp_path / 'rsync.secret'
    path.write_text('s3cret\n')
    return path


@pytest.fixture
def repo_root(tmp_path):
    """Empty repository root directory."""
    root = tmp_path / 'repo'
    root.mkdir()
    return root


@pytest.fixture(scope='function')
def hardlink_profile(db, repo_root, credential_file):
    """
    Create a backup profile using the hardlink backend.

    Two sources, 4 long-lived snapshots, 30 day max age, epoch timestamps.
    """
    profile = BackupProfile(
        name='nas',
        description='Test NAS backup',
        enabled=True,
        remote='backup@nas::data',
        source_config=json.dumps({
            'paths': ['/srv/www', '/etc/nginx'],
            'exclude_patterns': ['*.tmp', '.cache/']
        }),
        repository_path=str(repo_root),
        backend='hardlink',
        timestamp_format='epoch',
        credential=str(credential_file),
        preserve_permissions=True,
        schedule_cron='0 3 * * *',
        max_long_count=4,
        max_age_days=30
    )
    db.session.add(profile)
    db.session.commit()
    db.session.refresh(profile)
    return profile


@pytest.fixture(scope='function')
def btrfs_profile(db, repo_root, credential_file):
    """Create a backup profile using the btrfs backend."""
    profile = BackupProfile(
        name='nas-btrfs',
        enabled=True,
        remote='backup@nas:',
        source_config=json.dumps({'paths': ['/srv/www']}),
        repository_path=str(repo_root),
        backend='btrfs',
        timestamp_format='iso',
        credential=str(credential_file),
        preserve_permissions=True,
        max_long_count=4,
        max_age_days=30
    )
    db.session.add(profile)
    db.session.commit()
    return profile


@pytest.fixture
def make_snapshot_dir(repo_root):
    """
    Create a snapshot directory in the repository root.

    Usage: make_snapshot_dir('L', datetime(...)) -> Path
    """
    def _make(prefix, moment, timestamp_cls=EpochTimestamp):
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        path = repo_root / f"{prefix}_{timestamp_cls.from_datetime(moment)}"
        path.mkdir()
        (path / 'payload.txt').write_text(path.name)
        return path

    return _make


@pytest.fixture
def fake_rsync():
    """
    Replace the rsync subprocess with a stub.

    The stub writes payload.txt into the destination and exits 0. Register
    other outcomes per source with `fake_rsync.exit_codes[fragment] = code`,
    where code 'timeout' raises subprocess.TimeoutExpired.
    """
    exit_codes = {}

    def run(cmd, **kwargs):
        source, dest = cmd[-2], cmd[-1]
        code = 0
        for fragment, outcome in exit_codes.items():
            if fragment in source:
                code = outcome

        if code == 'timeout':
            raise subprocess.TimeoutExpired(cmd, kwargs.get('timeout'))
        if code in (0, 24):
            (Path(dest) / 'payload.txt').write_text(source)
        return subprocess.CompletedProcess(cmd, code, '', f'rsync error: code {code}')

    with patch('snapkeeper.backup.sync.subprocess.run', side_effect=run) as mock_run:
        mock_run.exit_codes = exit_codes
        yield mock_run
