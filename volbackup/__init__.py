import os
import atexit
import logging
from logging.handlers import RotatingFileHandler
from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_login import LoginManager
from flask_wtf.csrf import CSRFProtect


# Initialize extensions
db = SQLAlchemy()
login_manager = LoginManager()
csrf = CSRFProtect()


def configure_logging(app):
    """
    Console logging, plus a rotating volbackup.log when LOG_DIR is set.

    LOG_LEVEL overrides the default (DEBUG in development, INFO otherwise).
    """
    default_level = logging.DEBUG if app.config.get('DEBUG', False) else logging.INFO
    level_name = (app.config.get('LOG_LEVEL') or '').upper()
    log_level = logging.getLevelName(level_name) if level_name else default_level
    if not isinstance(log_level, int):
        log_level = default_level

    handlers = []

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    ))
    handlers.append(console_handler)

    log_dir = app.config.get('LOG_DIR')
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, 'volbackup.log'),
            maxBytes=10485760,  # 10MB
            backupCount=10
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(logging.Formatter(
            '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
        ))
        handlers.append(file_handler)

    # Only the first call configures the root logger
    logging.basicConfig(level=log_level, handlers=handlers)

    app.logger.setLevel(log_level)
    for handler in handlers:
        app.logger.addHandler(handler)

    app.logger.info(
        f"Logging configured (level: {logging.getLevelName(log_level)}, "
        f"file: {os.path.join(log_dir, 'volbackup.log') if log_dir else 'disabled'})"
    )


def register_error_handlers(app):
    """Translate engine errors into JSON responses"""
    from volbackup.backup.errors import (
        NotFoundError, PreconditionError, ConfigurationError, StorageError, InvalidTransitionError
    )

    def _error(e, status):
        return jsonify({'error': str(e)}), status

    app.register_error_handler(NotFoundError, lambda e: _error(e, 404))
    app.register_error_handler(PreconditionError, lambda e: _error(e, 400))
    app.register_error_handler(ValueError, lambda e: _error(e, 400))
    app.register_error_handler(InvalidTransitionError, lambda e: _error(e, 409))
    app.register_error_handler(ConfigurationError, lambda e: _error(e, 503))
    app.register_error_handler(StorageError, lambda e: _error(e, 503))


def create_app(config_name=None):
    """Flask application factory"""

    app = Flask(__name__)

    # Load configuration
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'production')

    from volbackup.config import config
    app.config.from_object(config[config_name])

    # Configure logging
    configure_logging(app)

    # Ensure the catalog directory exists
    db_uri = app.config['SQLALCHEMY_DATABASE_URI']
    if db_uri.startswith('sqlite:///') and ':memory:' not in db_uri:
        db_dir = os.path.dirname(db_uri.replace('sqlite:///', '', 1))
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

    # Initialize extensions
    db.init_app(app)
    login_manager.init_app(app)
    csrf.init_app(app)

    from volbackup.tasks import background_tasks
    background_tasks.init_app(app)

    # User loader callback
    @login_manager.user_loader
    def load_user(user_id):
        from volbackup.models import User
        from volbackup.auth import UserModel
        user = db.session.get(User, int(user_id))
        if user:
            return UserModel(user)
        return None

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'error': 'Authentication required'}), 401

    # Register blueprints FIRST (before CSRF exemption)
    from volbackup.routes import (
        auth_routes, volumes_routes, backups_routes, schedules_routes, groups_routes, logs_routes,
        dashboard_routes
    )
    app.register_blueprint(auth_routes.bp)
    app.register_blueprint(volumes_routes.bp)
    app.register_blueprint(backups_routes.bp)
    app.register_blueprint(schedules_routes.bp)
    app.register_blueprint(groups_routes.bp)
    app.register_blueprint(logs_routes.bp)
    app.register_blueprint(dashboard_routes.bp)

    # THEN exempt API routes from CSRF protection (using blueprint instances)
    csrf.exempt(volumes_routes.bp)
    csrf.exempt(backups_routes.bp)
    csrf.exempt(schedules_routes.bp)
    csrf.exempt(groups_routes.bp)
    csrf.exempt(logs_routes.bp)
    csrf.exempt(dashboard_routes.bp)

    register_error_handlers(app)

    # Health check endpoint
    @app.route('/health')
    def health():
        return {'status': 'healthy'}, 200

    # Initialize database schema and run migrations
    from volbackup import models  # noqa: F401
    from volbackup.migrations import init_database_schema

    # This handles both fresh installations and existing databases with migrations
    init_database_schema(app)

    # Determine if this process should own the timers
    is_reloader_child = os.environ.get('WERKZEUG_RUN_MAIN') == 'true'
    is_development = app.config.get('DEBUG', False)
    is_scheduler_worker = os.environ.get('SCHEDULER_WORKER', 'true').lower() == 'true'

    # Scheduler initialization logic:
    # - Development mode: Only in Flask reloader child process (not parent)
    # - Production mode: Only in designated scheduler worker (SCHEDULER_WORKER=true)
    if is_development:
        should_init_scheduler = is_reloader_child
        app.logger.info(f"Development mode: is_reloader_child={is_reloader_child}")
    else:
        should_init_scheduler = is_scheduler_worker
        app.logger.info(f"Production mode: is_scheduler_worker={is_scheduler_worker}")

    if app.config.get('SCHEDULER_ENABLED', True) and should_init_scheduler:
        start_background_services(app)
    else:
        app.logger.info("Scheduler initialization skipped in this process (not designated scheduler worker)")

    atexit.register(background_tasks.shutdown)

    return app


def start_background_services(app):
    """
    Startup reconciliation followed by the storage watch and the scheduler.
    """
    from volbackup.backup.reconcile import resolve_interrupted, reconcile_orphans, StorageWatch
    from volbackup.scheduler import scheduler

    app.logger.info("Initializing scheduler in this process...")

    with app.app_context():
        interrupted = resolve_interrupted()
        app.logger.info(
            f"Startup reconciliation: {interrupted['backups']} backups, "
            f"{interrupted['runs']} group runs marked interrupted"
        )
        reconcile_orphans()

    storage_path = app.config.get('BACKUP_STORAGE_PATH')
    if app.config.get('STORAGE_WATCH_ENABLED', True) and storage_path and os.path.isdir(storage_path):
        watch = StorageWatch(app, storage_path)
        try:
            watch.start()
            app.extensions['volbackup_storage_watch'] = watch
            atexit.register(watch.stop)
        except OSError as e:
            app.logger.warning(f"Storage watch unavailable, relying on periodic sweep: {e}")

    scheduler.init_app(app)
    scheduler.start()

    # Register cleanup function to stop scheduler on app shutdown
    atexit.register(scheduler.stop)
    app.logger.info("Scheduler initialized and started successfully")
