import os
from datetime import timedelta


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    """Base configuration"""

    # Flask
    # Get SECRET_KEY from environment, or generate a persistent one in development
    SECRET_KEY = os.environ.get('SECRET_KEY')
    if not SECRET_KEY:
        # Try to read from persistent file in /data directory
        secret_file = '/data/.secret_key'
        if os.path.exists(secret_file):
            with open(secret_file, 'r') as f:
                SECRET_KEY = f.read().strip()
        else:
            import secrets
            SECRET_KEY = secrets.token_hex(32)
            print("WARNING: Using non-persistent SECRET_KEY. Set SECRET_KEY environment variable.")

    # Database (catalog store)
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:////data/volbackup.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Session
    PERMANENT_SESSION_LIFETIME = timedelta(hours=24)
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'

    # CSRF
    WTF_CSRF_ENABLED = True
    WTF_CSRF_TIME_LIMIT = None

    # Logging; LOG_DIR=None keeps logs on the console only
    LOG_DIR = os.environ.get('LOG_DIR') or os.path.join(
        os.path.abspath(os.path.dirname(os.path.dirname(__file__))), 'data', 'logs'
    )
    LOG_LEVEL = os.environ.get('LOG_LEVEL')

    # Storage root for archives. Empty string means "not configured".
    BACKUP_STORAGE_PATH = os.environ.get('BACKUP_STORAGE_PATH', '/backups')

    # Retention in days (0 = keep forever)
    RETENTION_DAYS = int(os.environ.get('RETENTION_DAYS', '0'))

    # Scheduler
    SCHEDULER_ENABLED = _env_bool('SCHEDULER_ENABLED', True)
    SCHEDULER_TIMEZONE = 'UTC'
    SCHEDULER_TICK_SECONDS = 60
    RECONCILE_INTERVAL_SECONDS = 60
    RETENTION_INTERVAL_SECONDS = 3600
    STORAGE_WATCH_ENABLED = _env_bool('STORAGE_WATCH_ENABLED', True)

    # Credential used by internal callers of the trigger surface
    INTERNAL_SCHEDULER_TOKEN = os.environ.get('INTERNAL_SCHEDULER_TOKEN')

    # Background tasks
    BACKGROUND_TASKS_EAGER = False
    BACKGROUND_TASK_WORKERS = int(os.environ.get('BACKGROUND_TASK_WORKERS', '4'))

    # Concurrent runs of the same group are permitted unless disabled here
    ALLOW_CONCURRENT_GROUP_RUNS = _env_bool('ALLOW_CONCURRENT_GROUP_RUNS', True)

    # Notifications
    NOTIFY_BACKUP_FAILURE = _env_bool('NOTIFY_BACKUP_FAILURE', True)
    NOTIFY_RESTORE_COMPLETE = _env_bool('NOTIFY_RESTORE_COMPLETE', True)
    NOTIFY_SCHEDULE_COMPLETE = _env_bool('NOTIFY_SCHEDULE_COMPLETE', True)


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    SQLALCHEMY_ECHO = False

    # Use local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    SQLALCHEMY_DATABASE_URI = f'sqlite:///{os.path.join(DATA_DIR, "volbackup.db")}'
    BACKUP_STORAGE_PATH = os.environ.get('BACKUP_STORAGE_PATH') or os.path.join(DATA_DIR, 'backups')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    SQLALCHEMY_ECHO = False

    # Production security
    SESSION_COOKIE_SECURE = os.environ.get('HTTPS_ENABLED', 'false').lower() == 'true'


class TestingConfig(Config):
    """Test configuration: in-memory catalog, no timers, inline tasks"""
    TESTING = True
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    WTF_CSRF_ENABLED = False
    SECRET_KEY = 'test-secret-key'
    SCHEDULER_ENABLED = False
    STORAGE_WATCH_ENABLED = False
    BACKGROUND_TASKS_EAGER = True
    INTERNAL_SCHEDULER_TOKEN = 'test-internal-token'
    RETENTION_DAYS = 0
    LOG_DIR = None


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': ProductionConfig
}
