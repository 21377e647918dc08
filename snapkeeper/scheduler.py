"""
APScheduler configuration and scheduling of backup cycles.

Each enabled profile with a cron expression gets one scheduled job. A profile
never runs twice at the same time within this process (max_instances=1).
"""

import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
from apscheduler.executors.pool import ThreadPoolExecutor

from snapkeeper.models import BackupProfile
from snapkeeper.backup.executor import execute_backup_profile


logger = logging.getLogger(__name__)

# Process-wide scheduler and the app its jobs run under
scheduler = None
flask_app = None


def _job_id(profile_id: int) -> str:
    return f"backup_{profile_id}"


def init_scheduler(app):
    """
    Build the background scheduler backing profile cron jobs.

    Args:
        app: Flask app instance
    """
    global scheduler, flask_app

    if scheduler is not None:
        return scheduler

    # Jobs run in worker threads and need an app context
    flask_app = app

    jobstores = {
        'default': SQLAlchemyJobStore(url=app.config['SQLALCHEMY_DATABASE_URI'])
    }

    executors = {
        'default': ThreadPoolExecutor(max_workers=3)
    }

    job_defaults = {
        'coalesce': True,  # Missed runs collapse into one
        'max_instances': 1,  # One running cycle per profile
        'misfire_grace_time': 300
    }

    scheduler = BackgroundScheduler(
        jobstores=jobstores,
        executors=executors,
        job_defaults=job_defaults,
        timezone=app.config.get('SCHEDULER_TIMEZONE', 'UTC')
    )

    return scheduler


def start_scheduler():
    """
    Start running scheduled backups.

    Requires init_scheduler() to have run.
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    if scheduler.running:
        logger.info(f"Scheduler already running (state={scheduler.state})")
        return

    scheduler.start()
    logger.info(f"APScheduler started (state={scheduler.state})")

    for job in scheduler.get_jobs():
        next_run = job.next_run_time.isoformat() if job.next_run_time else 'N/A'
        logger.info(f"  - {job.id}: {job.name} (next run: {next_run})")


def stop_scheduler():
    """Shut the scheduler down if it is running."""
    if scheduler and scheduler.running:
        scheduler.shutdown()
        logger.info("APScheduler stopped")


def sync_backup_profiles():
    """
    Make the scheduled jobs match the enabled profiles in the database.

    Called at worker startup; call again after profiles change.
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized")

    scheduled_job_ids = {job.id for job in scheduler.get_jobs() if job.id.startswith('backup_')}

    for profile in BackupProfile.query.all():
        job_id = _job_id(profile.id)

        if profile.enabled and profile.schedule_cron:
            _schedule_profile(profile)
            scheduled_job_ids.discard(job_id)
        elif job_id in scheduled_job_ids:
            _remove_scheduled_profile(profile.id)
            scheduled_job_ids.discard(job_id)

    # Jobs whose profile was deleted
    for leftover_id in scheduled_job_ids:
        scheduler.remove_job(leftover_id)
        logger.info(f"Removed orphaned scheduled job: {leftover_id}")


def _schedule_profile(profile: BackupProfile):
    """
    Add or replace the scheduled job of a profile.

    An invalid cron expression is logged and the profile stays unscheduled.
    """
    try:
        trigger = CronTrigger.from_crontab(profile.schedule_cron, timezone='UTC')
    except ValueError as e:
        logger.error(f"Invalid schedule for profile {profile.name} ({profile.schedule_cron}): {e}")
        return

    scheduler.add_job(
        func=_execute_backup_wrapper,
        args=[profile.id],
        trigger=trigger,
        id=_job_id(profile.id),
        name=f"Backup: {profile.name}",
        replace_existing=True
    )
    logger.info(f"Scheduled backup profile: {profile.name} ({profile.schedule_cron})")


def _remove_scheduled_profile(profile_id: int):
    """
    Remove a profile's job from the scheduler.

    Args:
        profile_id: BackupProfile ID
    """
    scheduler.remove_job(_job_id(profile_id))
    logger.info(f"Removed scheduled backup profile ID: {profile_id}")


def _execute_backup_wrapper(profile_id: int):
    """
    Run a backup cycle from a scheduler thread.

    Executes within an app context so the database session is managed.

    Args:
        profile_id: BackupProfile ID to execute
    """
    with flask_app.app_context():
        try:
            history = execute_backup_profile(profile_id)
        except ValueError as e:
            logger.error(f"Scheduled backup {profile_id} skipped: {e}")
            return
        logger.info(f"Scheduled backup {profile_id} finished with status: {history.status}")


def get_scheduled_jobs() -> dict:
    """
    Get next run times of scheduled profiles.

    Returns:
        Dict mapping profile ID to ISO next-run time (or None)
    """
    if scheduler is None:
        return {}

    jobs = {}
    for job in scheduler.get_jobs():
        if not job.id.startswith('backup_'):
            continue
        profile_id = int(job.id[len('backup_'):])
        jobs[profile_id] = job.next_run_time.isoformat() if job.next_run_time else None
    return jobs
