import atexit
import os
import logging
from logging.handlers import RotatingFileHandler
from flask import Flask
from flask_sqlalchemy import SQLAlchemy


db = SQLAlchemy()

CONSOLE_FORMAT = '[%(asctime)s] %(levelname)s %(name)s: %(message)s'
FILE_FORMAT = '[%(asctime)s] %(levelname)s [%(name)s:%(lineno)d] %(message)s'


def configure_logging(app):
    """Send log records to the console and, when LOG_DIR is set, to a rotating file"""
    level = logging.DEBUG if app.config.get('DEBUG', False) else logging.INFO

    stream = logging.StreamHandler()
    stream.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    handlers = [stream]

    log_dir = app.config.get('LOG_DIR')
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        rotating = RotatingFileHandler(
            os.path.join(log_dir, 'snapkeeper.log'),
            maxBytes=10 * 1024 * 1024,
            backupCount=10
        )
        rotating.setFormatter(logging.Formatter(FILE_FORMAT))
        handlers.append(rotating)

    for handler in handlers:
        handler.setLevel(level)

    logging.basicConfig(level=level, handlers=handlers)
    app.logger.setLevel(level)
    app.logger.info(f"Logging to {len(handlers)} handler(s) at {logging.getLevelName(level)}")


def _scheduler_wanted(app) -> bool:
    # Only the designated worker runs jobs; CLI invocations never do
    if not app.config.get('SCHEDULER_ENABLED', True):
        return False
    if os.environ.get('SCHEDULER_WORKER', 'false').lower() != 'true':
        return False
    if app.config.get('DEBUG', False):
        # The reloader parent process must not schedule too
        return os.environ.get('WERKZEUG_RUN_MAIN') == 'true'
    return True


def create_app(config_name=None):
    """Build the snapkeeper Flask application"""
    app = Flask(__name__)

    from snapkeeper.config import config
    app.config.from_object(config[config_name or os.environ.get('SNAPKEEPER_ENV', 'production')])

    configure_logging(app)

    db_uri = app.config['SQLALCHEMY_DATABASE_URI']
    if db_uri.startswith('sqlite:///') and db_uri != 'sqlite:///:memory:':
        os.makedirs(os.path.dirname(db_uri[len('sqlite:///'):]), exist_ok=True)

    db.init_app(app)

    from snapkeeper.routes import profiles_routes
    app.register_blueprint(profiles_routes.bp)

    from snapkeeper.cli import register_commands
    register_commands(app)

    @app.route('/health')
    def health():
        return {'status': 'healthy'}, 200

    from snapkeeper import models
    with app.app_context():
        db.create_all()

    if _scheduler_wanted(app):
        from snapkeeper.scheduler import init_scheduler, start_scheduler, sync_backup_profiles, stop_scheduler

        init_scheduler(app)
        start_scheduler()
        with app.app_context():
            sync_backup_profiles()
        atexit.register(stop_scheduler)
        app.logger.info("Backup scheduler running in this process")
    else:
        app.logger.debug("Backup scheduler not started in this process")

    return app
