"""
Backup profile routes - read-only view of profiles, snapshots and history.
"""

import json
from flask import Blueprint, jsonify, request

from snapkeeper.models import BackupProfile, BackupHistory
from snapkeeper.backup.errors import SnapkeeperError
from snapkeeper.backup.executor import list_profile_snapshots
from snapkeeper.scheduler import get_scheduled_jobs


bp = Blueprint('profiles', __name__, url_prefix='/api/profiles')


def _profile_sources(profile):
    try:
        source_config = json.loads(profile.source_config or '{}')
    except ValueError:
        return []
    if not isinstance(source_config, dict):
        return []
    paths = source_config.get('paths', [])
    return paths if isinstance(paths, list) else []


@bp.route('/', methods=['GET'])
def list_profiles():
    """
    Get list of all backup profiles.

    Returns:
        JSON array of backup profiles with their next scheduled run
    """
    profiles = BackupProfile.query.order_by(BackupProfile.name).all()
    next_runs = get_scheduled_jobs()

    profiles_data = []
    for profile in profiles:
        profiles_data.append({
            'id': profile.id,
            'name': profile.name,
            'description': profile.description,
            'enabled': profile.enabled,
            'remote': profile.remote,
            'sources': _profile_sources(profile),
            'repository_path': profile.repository_path,
            'backend': profile.backend,
            'timestamp_format': profile.timestamp_format,
            'schedule_cron': profile.schedule_cron,
            'max_long_count': profile.max_long_count,
            'max_age_days': profile.max_age_days,
            'next_run': next_runs.get(profile.id)
        })

    return jsonify(profiles_data)


@bp.route('/<name>/snapshots', methods=['GET'])
def list_snapshots(name):
    """
    List the snapshots of a profile's repository.

    Args:
        name: Backup profile name

    Returns:
        JSON with the repository root and snapshots in listing order
    """
    profile = BackupProfile.query.filter_by(name=name).first_or_404()

    try:
        repository, snapshots = list_profile_snapshots(profile)
    except SnapkeeperError as e:
        return jsonify({'error': str(e), 'category': e.category}), 409

    last = repository.last_snapshot()

    return jsonify({
        'repository': str(repository.root),
        'snapshots': [
            {
                'name': snapshot.name,
                'tier': snapshot.tier.label,
                'created_at': snapshot.timestamp.to_datetime().isoformat(),
                'last': last is not None and last.name == snapshot.name
            }
            for snapshot in snapshots
        ]
    })


@bp.route('/<name>/history', methods=['GET'])
def get_profile_history(name):
    """
    Get backup cycle history for a profile.

    Query params:
        - limit: Max number of records (default: 50, max: 200)

    Returns:
        JSON array of backup history records, newest first
    """
    profile = BackupProfile.query.filter_by(name=name).first_or_404()

    limit = request.args.get('limit', 50, type=int)
    if limit > 200:
        limit = 200

    history = BackupHistory.query.filter_by(profile_id=profile.id).order_by(
        BackupHistory.started_at.desc()
    ).limit(limit).all()

    history_data = []
    for record in history:
        history_data.append({
            'id': record.id,
            'status': record.status,
            'started_at': record.started_at.isoformat(),
            'completed_at': record.completed_at.isoformat() if record.completed_at else None,
            'snapshot_name': record.snapshot_name,
            'snapshot_tier': record.snapshot_tier,
            'sources_succeeded': record.sources_succeeded,
            'sources_failed': record.sources_failed,
            'deleted_snapshots': record.deleted_snapshots.splitlines() if record.deleted_snapshots else [],
            'error_category': record.error_category,
            'error_message': record.error_message
        })

    return jsonify(history_data)
