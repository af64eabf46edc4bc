"""
Audit trail for operator-visible events.

Writes go to the `logs` table and are mirrored to the application log.
Recording is fire-and-forget: a failed write is logged and rolled back but
never propagates into the operation being audited.
"""

import logging
from datetime import timedelta
from typing import Optional, Dict, Any

from sqlalchemy import func

from volbackup import db
from volbackup.models import AuditLog
from volbackup.utils.clock import utcnow

logger = logging.getLogger(__name__)

LEVELS = ('info', 'success', 'warning', 'error')
CATEGORIES = ('backup', 'restore', 'schedule', 'retention', 'sync', 'system', 'auth', 'general')

_LOG_LEVELS = {
    'info': logging.INFO,
    'success': logging.INFO,
    'warning': logging.WARNING,
    'error': logging.ERROR,
}


def record_event(
    level: str,
    category: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    volume_id: Optional[int] = None,
    backup_id: Optional[int] = None,
    group_id: Optional[int] = None,
    user_id: Optional[str] = None
):
    """
    Record an audit entry.

    Commits the current session, so callers should have their own state
    committed (or be happy to have it committed) before auditing.
    """
    logger.log(_LOG_LEVELS.get(level, logging.INFO), f"[{category}] {message}")

    try:
        db.session.add(AuditLog(
            level=level,
            category=category,
            message=message,
            details=details or {},
            volume_id=volume_id,
            backup_id=backup_id,
            group_id=group_id,
            user_id=user_id
        ))
        db.session.commit()
    except Exception as e:
        logger.error(f"Error writing audit log: {e}")
        db.session.rollback()


def query_events(level=None, category=None, volume_id=None, limit: int = 100, offset: int = 0):
    """Audit entries newest first, with optional filters."""
    query = AuditLog.query
    if level:
        query = query.filter(AuditLog.level == level)
    if category:
        query = query.filter(AuditLog.category == category)
    if volume_id:
        query = query.filter(AuditLog.volume_id == volume_id)

    return query.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).limit(limit).offset(offset).all()


def event_stats(hours: int = 24) -> Dict[str, int]:
    """Count of entries per level over the last `hours`."""
    cutoff = utcnow() - timedelta(hours=hours)
    stats = {level: 0 for level in LEVELS}

    rows = db.session.query(AuditLog.level, func.count(AuditLog.id)).filter(
        AuditLog.timestamp > cutoff
    ).group_by(AuditLog.level).all()

    for level, count in rows:
        stats[level] = count
    return stats


def clear_events(older_than=None) -> int:
    """Delete audit entries, optionally only those older than a timestamp."""
    query = AuditLog.query
    if older_than is not None:
        query = query.filter(AuditLog.timestamp < older_than)
    deleted = query.delete(synchronize_session=False)
    db.session.commit()
    return deleted
