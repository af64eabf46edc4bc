"""
Retention policy enforcement for backups.

Completed backups older than the configured number of days are expired: the
archive file is deleted first, then the record. A retention of 0 keeps
everything forever.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, Any, Optional

from flask import current_app

from volbackup import db
from volbackup.audit import record_event
from volbackup.models import Backup, STATUS_COMPLETED
from volbackup.utils.clock import utcnow
from .errors import ConfigurationError, StorageError
from .storage import LocalStorage, get_storage

logger = logging.getLogger(__name__)


class RetentionSweeper:
    """
    Expires completed backups past the retention age.
    """

    def __init__(self, retention_days: int, storage: LocalStorage):
        """
        Initialize retention sweeper.

        Args:
            retention_days: Maximum age in days; 0 disables expiry
            storage: Storage handler for the archive files
        """
        self.retention_days = int(retention_days or 0)
        self.storage = storage

    def sweep(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Delete expired backups, oldest first.

        Returns:
            Dict with summary of cleanup operations:
            {
                'deleted': int,
                'failed': int,
                'cutoff': str or None
            }
        """
        summary = {'deleted': 0, 'failed': 0, 'cutoff': None}

        if self.retention_days <= 0:
            logger.debug("Retention disabled, keeping all backups")
            return summary

        cutoff = (now or utcnow()) - timedelta(days=self.retention_days)
        summary['cutoff'] = cutoff.isoformat()

        expired = Backup.query.filter(
            Backup.status == STATUS_COMPLETED,
            Backup.completed_at < cutoff
        ).order_by(Backup.completed_at.asc()).all()

        if not expired:
            return summary

        logger.info(f"Retention: {len(expired)} backups older than {self.retention_days} days")

        for backup in expired:
            try:
                self._expire(backup)
                summary['deleted'] += 1
            except StorageError as e:
                summary['failed'] += 1
                logger.error(f"Failed to delete expired backup {backup.id}: {e}")
                record_event(
                    'error', 'retention',
                    "Failed to delete expired backup",
                    details={'backupPath': backup.archive_path, 'error': str(e)},
                    volume_id=backup.volume_id, backup_id=backup.id
                )

        level = 'warning' if summary['failed'] else 'success'
        record_event(
            level, 'retention',
            f"Retention sweep deleted {summary['deleted']} backups, {summary['failed']} failed",
            details={'retentionDays': self.retention_days, **summary}
        )
        return summary

    def _expire(self, backup: Backup):
        # File first: a failed delete must leave the record in place
        if not self.storage.delete(backup.archive_path):
            logger.info(f"Expired archive already missing: {backup.archive_path}")

        backup_id, volume_id, archive_path = backup.id, backup.volume_id, backup.archive_path
        completed_at = backup.completed_at
        db.session.delete(backup)
        db.session.commit()

        record_event(
            'info', 'retention',
            "Expired backup deleted",
            details={'backupPath': archive_path, 'completedAt': completed_at.isoformat()},
            volume_id=volume_id, backup_id=backup_id
        )


def enforce_retention_policy(now: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
    """
    Run one retention sweep with the configured RETENTION_DAYS.

    This function is called by the scheduler every hour.
    """
    retention_days = current_app.config.get('RETENTION_DAYS', 0)
    if not retention_days:
        return RetentionSweeper(0, None).sweep(now)

    try:
        storage = get_storage(create=False)
    except (ConfigurationError, StorageError) as e:
        logger.warning(f"Retention sweep skipped: {e}")
        return None
    return RetentionSweeper(retention_days, storage).sweep(now)
