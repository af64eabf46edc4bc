"""
Dashboard routes - Overview and statistics endpoints.
"""

from datetime import timedelta

from flask import Blueprint, current_app, jsonify
from sqlalchemy import func

from volbackup import db
from volbackup.auth import api_auth_required
from volbackup.models import (
    Volume, Backup, Schedule, ScheduleGroup, STATUS_COMPLETED, STATUS_FAILED, STATUS_IN_PROGRESS
)
from volbackup.utils.clock import utcnow


bp = Blueprint('dashboard', __name__, url_prefix='/api/dashboard')


def _scheduler():
    return current_app.extensions.get('volbackup_scheduler')


@bp.route('/overview', methods=['GET'])
@api_auth_required
def get_overview():
    """
    Get dashboard overview statistics.

    Returns:
        JSON with overview stats:
        - total_volumes: Number of tracked volumes
        - active_schedules: Number of enabled schedules
        - active_groups: Number of enabled schedule groups
        - running_backups: Backups currently in progress
        - last_backup: Most recent finished backup
        - scheduler_status: 'running' or 'stopped'
    """
    last_backup = Backup.query.filter(
        Backup.completed_at.isnot(None)
    ).order_by(Backup.completed_at.desc()).first()

    scheduler = _scheduler()

    return jsonify({
        'total_volumes': Volume.query.count(),
        'active_schedules': Schedule.query.filter_by(enabled=True).count(),
        'active_groups': ScheduleGroup.query.filter_by(enabled=True).count(),
        'running_backups': Backup.query.filter_by(status=STATUS_IN_PROGRESS).count(),
        'last_backup': last_backup.to_dict() if last_backup else None,
        'scheduler_status': 'running' if scheduler is not None and scheduler.running else 'stopped'
    })


@bp.route('/statistics', methods=['GET'])
@api_auth_required
def get_statistics():
    """
    Get backup statistics.

    Returns:
        JSON with statistics:
        - total_backups, completed_backups, failed_backups
        - total_size_bytes: Size of all completed backups
        - backups_last_7_days, backups_last_30_days
    """
    total_size_bytes = db.session.query(
        func.sum(Backup.size_bytes)
    ).filter(
        Backup.status == STATUS_COMPLETED
    ).scalar() or 0

    now = utcnow()

    return jsonify({
        'total_backups': Backup.query.count(),
        'completed_backups': Backup.query.filter_by(status=STATUS_COMPLETED).count(),
        'failed_backups': Backup.query.filter_by(status=STATUS_FAILED).count(),
        'total_size_bytes': int(total_size_bytes),
        'backups_last_7_days': Backup.query.filter(Backup.created_at >= now - timedelta(days=7)).count(),
        'backups_last_30_days': Backup.query.filter(Backup.created_at >= now - timedelta(days=30)).count()
    })


@bp.route('/scheduler', methods=['GET'])
@api_auth_required
def get_scheduler_status():
    """
    Scheduler state and its timer jobs with next run times.

    Only the timer-owning process reports itself as running.
    """
    scheduler = _scheduler()
    return jsonify({
        'running': scheduler is not None and scheduler.running,
        'jobs': scheduler.jobs() if scheduler is not None else []
    })
