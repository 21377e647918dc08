from datetime import datetime, timezone

from snapkeeper import db


def _utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


class BackupProfile(db.Model):
    """Backup profile configuration"""
    __tablename__ = 'backup_profiles'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), unique=True, nullable=False)
    description = db.Column(db.Text)
    enabled = db.Column(db.Boolean, default=True, nullable=False)
    remote = db.Column(db.String(500), nullable=False)  # e.g. backup@nas::data or backup@nas:
    source_config = db.Column(db.Text, nullable=False)  # JSON string: paths, exclude_patterns
    repository_path = db.Column(db.String(500), nullable=False)
    backend = db.Column(db.String(20), nullable=False, default='hardlink')  # 'btrfs' or 'hardlink'
    timestamp_format = db.Column(db.String(10), nullable=False, default='epoch')  # 'epoch' or 'iso', fixed per repository
    credential = db.Column(db.String(500), nullable=False)  # Password file or SSH key path
    preserve_permissions = db.Column(db.Boolean, default=True, nullable=False)
    schedule_cron = db.Column(db.String(100))  # Cron expression
    max_long_count = db.Column(db.Integer, nullable=False, default=4)
    max_age_days = db.Column(db.Integer, nullable=False, default=30)
    timeout_seconds = db.Column(db.Integer)  # null = no limit
    created_at = db.Column(db.DateTime, default=_utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    # Relationship
    history = db.relationship('BackupHistory', back_populates='profile', cascade='all, delete-orphan', lazy='dynamic')

    def __repr__(self):
        return f'<BackupProfile {self.name} backend={self.backend} enabled={self.enabled}>'


class BackupHistory(db.Model):
    """Backup cycle history and logs"""
    __tablename__ = 'backup_history'

    id = db.Column(db.Integer, primary_key=True)
    profile_id = db.Column(db.Integer, db.ForeignKey('backup_profiles.id'), nullable=False)
    status = db.Column(db.String(20), nullable=False)  # running, success, failed
    started_at = db.Column(db.DateTime, default=_utcnow, nullable=False)
    completed_at = db.Column(db.DateTime)
    snapshot_name = db.Column(db.String(100))
    snapshot_tier = db.Column(db.String(10))  # long or short
    sources_succeeded = db.Column(db.Integer, default=0, nullable=False)
    sources_failed = db.Column(db.Integer, default=0, nullable=False)
    deleted_snapshots = db.Column(db.Text)  # Newline separated snapshot names
    error_category = db.Column(db.String(20))
    error_message = db.Column(db.Text)
    logs = db.Column(db.Text)  # Detailed execution logs

    # Relationship
    profile = db.relationship('BackupProfile', back_populates='history')

    def __repr__(self):
        return f'<BackupHistory profile_id={self.profile_id} status={self.status}>'
