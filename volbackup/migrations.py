"""
Database migrations for volbackup.

Simple migration system to handle schema changes without requiring Alembic.
"""

import logging
from sqlalchemy import text, inspect
from volbackup import db

logger = logging.getLogger(__name__)

# Legacy cron fields (minute, hour, day-of-month, day-of-week) to frequency; first match wins
_CRON_FREQUENCIES = (
    ('hourly', lambda minute, hour, dom, dow: hour == '*' and dom == '*' and dow == '*'),
    ('monthly', lambda minute, hour, dom, dow: dom != '*'),
    ('weekly', lambda minute, hour, dom, dow: dow != '*'),
    ('daily', lambda minute, hour, dom, dow: True),
)


def init_database_schema(app):
    """
    Initialize database schema and run migrations.

    This function creates tables if they don't exist and runs any necessary migrations.
    It's designed to be called from multiple Gunicorn workers without conflicts.
    """
    with app.app_context():
        inspector = inspect(db.engine)
        existing_tables = inspector.get_table_names()

        if existing_tables:
            run_migrations(app, inspector)

        # Creates only missing tables, so it also covers partially initialized databases
        try:
            db.create_all()
        except Exception as e:
            # Another worker may have created the tables concurrently
            logger.error(f"Failed to create database schema: {e}")
            db.session.rollback()


def run_migrations(app, inspector=None):
    """
    Run all necessary database migrations.

    This function checks the database schema and applies any missing changes.
    """
    if inspector is None:
        inspector = inspect(db.engine)

    tables = inspector.get_table_names()

    # Migration 1: cron_expression -> frequency/time on schedules and schedule groups
    for table in ('schedules', 'schedule_groups'):
        if table not in tables:
            continue
        columns = [col['name'] for col in inspector.get_columns(table)]
        if 'cron_expression' in columns and 'frequency' not in columns:
            _migrate_cron_columns(table)

    # Migration 2: description column on schedule_groups
    if 'schedule_groups' in tables:
        columns = [col['name'] for col in inspector.get_columns('schedule_groups')]
        if 'description' not in columns:
            _add_column('schedule_groups', "description TEXT DEFAULT ''")

    # Migration 3: error_message column on schedule_group_runs
    if 'schedule_group_runs' in tables:
        columns = [col['name'] for col in inspector.get_columns('schedule_group_runs')]
        if 'error_message' not in columns:
            _add_column('schedule_group_runs', 'error_message TEXT')


def _add_column(table: str, definition: str):
    logger.info(f"Running migration: Adding {definition.split()[0]} column to {table} table")
    try:
        db.session.execute(text(f"ALTER TABLE {table} ADD COLUMN {definition}"))
        db.session.commit()
        logger.info(f"Successfully added column to {table}")
    except Exception as e:
        logger.error(f"Failed to add column to {table}: {e}")
        db.session.rollback()


def cron_to_recurrence(expression: str):
    """
    Convert a 5-field cron expression to (frequency, 'HH:MM').

    Raises:
        ValueError: If the expression cannot be mapped
    """
    fields = (expression or '').split()
    if len(fields) != 5:
        raise ValueError(f"Unsupported cron expression: {expression!r}")

    minute, hour, dom, _, dow = fields
    if not minute.isdigit():
        raise ValueError(f"Unsupported cron expression: {expression!r}")

    for frequency, matches in _CRON_FREQUENCIES:
        if matches(minute, hour, dom, dow):
            hour_value = 0 if hour == '*' else int(hour)
            return frequency, f"{hour_value:02d}:{int(minute):02d}"

    raise ValueError(f"Unsupported cron expression: {expression!r}")


def _migrate_cron_columns(table: str):
    """Add frequency/time columns and fill them from the legacy cron expression."""
    logger.info(f"Running migration: Converting cron_expression to frequency/time on {table}")
    try:
        db.session.execute(text(f"ALTER TABLE {table} ADD COLUMN frequency VARCHAR(20) NOT NULL DEFAULT 'daily'"))
        db.session.execute(text(f"ALTER TABLE {table} ADD COLUMN time VARCHAR(5) NOT NULL DEFAULT '00:00'"))

        rows = db.session.execute(text(f"SELECT id, cron_expression FROM {table}")).fetchall()
        migrated = skipped = 0
        for row_id, expression in rows:
            try:
                frequency, time_of_day = cron_to_recurrence(expression)
            except (ValueError, TypeError) as e:
                logger.warning(f"{table} {row_id}: {e}; defaulting to daily at 00:00")
                skipped += 1
                continue
            db.session.execute(
                text(f"UPDATE {table} SET frequency = :frequency, time = :time WHERE id = :id"),
                {'frequency': frequency, 'time': time_of_day, 'id': row_id}
            )
            migrated += 1

        db.session.commit()
        logger.info(f"Cron migration for {table} complete: {migrated} migrated, {skipped} defaulted")
    except Exception as e:
        logger.error(f"Failed to migrate cron expressions on {table}: {e}")
        db.session.rollback()
