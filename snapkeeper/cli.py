"""
Operator commands, run as `flask --app snapkeeper <command>`.

Exit status is 0 on success, otherwise the code of the error category.
"""

import json

import click
from flask.cli import with_appcontext

from snapkeeper import db
from snapkeeper.models import BackupProfile
from snapkeeper.backup.backends import BACKENDS
from snapkeeper.backup.errors import ConfigurationError, SnapkeeperError
from snapkeeper.backup.executor import (
    BackupExecutor,
    delete_profile_snapshot,
    get_profile,
    list_profile_snapshots,
    prune_profile
)
from snapkeeper.backup.profile import ProfileConfig
from snapkeeper.backup.timestamps import TIMESTAMP_FORMATS


EXIT_CODES = {
    'unexpected': 1,
    'configuration': 2,
    'repository': 3,
    'transfer': 4,
    'backend': 5,
    'pruning': 6,
    'timeout': 7,
}


def _fail(category: str, message: str):
    click.echo(f"Error [{category}]: {message}", err=True)
    raise SystemExit(EXIT_CODES.get(category, 1))


def _load_profile(name: str) -> BackupProfile:
    try:
        return get_profile(name)
    except ValueError as e:
        _fail(ConfigurationError.category, str(e))


@click.command('backup')
@click.argument('profile_name')
@click.option('--timeout', type=click.FloatRange(min=0, min_open=True), default=None,
              help='Seconds allowed for all transfers.')
@with_appcontext
def backup_command(profile_name, timeout):
    """Run one backup cycle for PROFILE_NAME."""
    profile = _load_profile(profile_name)

    history = BackupExecutor(profile).execute(timeout=timeout)

    if history.status != 'success':
        _fail(history.error_category or 'unexpected', f"profile {profile.name}: {history.error_message}")

    click.echo(f"Created {history.snapshot_tier} snapshot {history.snapshot_name}")
    if history.deleted_snapshots:
        for name in history.deleted_snapshots.splitlines():
            click.echo(f"Deleted {name}")


@click.command('list')
@click.argument('profile_name')
@with_appcontext
def list_command(profile_name):
    """Print the repository root and every snapshot of PROFILE_NAME."""
    profile = _load_profile(profile_name)

    try:
        repository, snapshots = list_profile_snapshots(profile)
    except SnapkeeperError as e:
        _fail(e.category, f"profile {profile.name}: {e}")

    click.echo(str(repository.root))
    for snapshot in snapshots:
        click.echo(snapshot.name)


@click.command('prune')
@click.argument('profile_name')
@with_appcontext
def prune_command(profile_name):
    """Delete the snapshots of PROFILE_NAME the retention policy expires."""
    profile = _load_profile(profile_name)

    try:
        summary = prune_profile(profile)
    except SnapkeeperError as e:
        _fail(e.category, f"profile {profile.name}: {e}")

    for name in summary['deleted']:
        click.echo(f"Deleted {name}")


@click.command('delete-snapshot')
@click.argument('profile_name')
@click.argument('snapshot_name')
@with_appcontext
def delete_snapshot_command(profile_name, snapshot_name):
    """Delete SNAPSHOT_NAME from the repository of PROFILE_NAME."""
    profile = _load_profile(profile_name)

    try:
        snapshot = delete_profile_snapshot(profile, snapshot_name)
    except SnapkeeperError as e:
        _fail(e.category, f"profile {profile.name}: {e}")

    click.echo(f"Deleted {snapshot.name}")


@click.command('add-profile')
@click.argument('name')
@click.option('--remote', required=True, help='rsync endpoint, e.g. backup@nas::data or backup@nas:')
@click.option('--source', 'sources', multiple=True, required=True, help='Source path on the remote (repeatable).')
@click.option('--exclude', 'exclude_patterns', multiple=True, help='rsync exclude pattern (repeatable).')
@click.option('--repository', 'repository_path', required=True, help='Absolute repository root.')
@click.option('--backend', type=click.Choice(sorted(BACKENDS)), default='hardlink', show_default=True)
@click.option('--timestamp-format', type=click.Choice(sorted(TIMESTAMP_FORMATS)), default='epoch', show_default=True)
@click.option('--credential', required=True, help='Password file (rsync daemon) or SSH private key.')
@click.option('--schedule', 'schedule_cron', default=None, help='Cron expression, e.g. "0 3 * * *".')
@click.option('--max-long-count', type=int, default=4, show_default=True)
@click.option('--max-age-days', type=int, default=30, show_default=True)
@click.option('--timeout', 'timeout_seconds', type=int, default=None, help='Transfer deadline in seconds.')
@click.option('--preserve-permissions/--no-preserve-permissions', default=True, show_default=True)
@click.option('--description', default='')
@click.option('--disabled', is_flag=True, help='Store the profile without scheduling it.')
@with_appcontext
def add_profile_command(name, remote, sources, exclude_patterns, repository_path, backend,
                        timestamp_format, credential, schedule_cron, max_long_count,
                        max_age_days, timeout_seconds, preserve_permissions, description, disabled):
    """Store a new backup profile NAME."""
    if BackupProfile.query.filter_by(name=name).first():
        _fail(ConfigurationError.category, f"profile name already exists: {name}")

    profile = BackupProfile(
        name=name,
        description=description,
        enabled=not disabled,
        remote=remote,
        source_config=json.dumps({
            'paths': list(sources),
            'exclude_patterns': list(exclude_patterns)
        }),
        repository_path=repository_path,
        backend=backend,
        timestamp_format=timestamp_format,
        credential=credential,
        preserve_permissions=preserve_permissions,
        schedule_cron=schedule_cron,
        max_long_count=max_long_count,
        max_age_days=max_age_days,
        timeout_seconds=timeout_seconds
    )

    try:
        ProfileConfig.from_profile(profile)
    except ConfigurationError as e:
        _fail(e.category, str(e))

    db.session.add(profile)
    db.session.commit()
    click.echo(f"Profile {name} created")


def register_commands(app):
    """Attach the operator commands to the Flask CLI."""
    for command in (backup_command, list_command, prune_command,
                    delete_snapshot_command, add_profile_command):
        app.cli.add_command(command)
