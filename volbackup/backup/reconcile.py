"""
Orphan reconciliation between the backup catalog and the storage root.

A finished (completed or failed) backup whose archive file is gone from disk is
an orphan and its record is deleted. Records still in progress are left alone.
The sweep is one-directional: files without a record are never imported into
the catalog.
"""

import os
import logging
from typing import Dict, Any, Optional

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from volbackup import db
from volbackup.audit import record_event
from volbackup.models import Backup, ScheduleGroupRun, STATUS_IN_PROGRESS, STATUS_FAILED, TERMINAL_STATUSES
from volbackup.utils.clock import utcnow
from .errors import ConfigurationError, StorageError, StorageUnavailableError
from .storage import LocalStorage, get_storage

logger = logging.getLogger(__name__)

INTERRUPTED_MESSAGE = "Interrupted by application restart"


class OrphanReconciler:
    """
    Deletes catalog records whose archive file no longer exists.
    """

    def __init__(self, storage: LocalStorage):
        self.storage = storage

    def sweep(self) -> Dict[str, Any]:
        """
        Full reconciliation pass.

        A record is only removed once its file is verified absent; if the
        storage root cannot be listed nothing is removed.

        Returns:
            Dict with 'checked', 'deleted' and 'errors' counts
        """
        summary = {'checked': 0, 'deleted': 0, 'errors': 0}

        try:
            present = {os.path.abspath(a['path']) for a in self.storage.list_archives()}
        except StorageUnavailableError as e:
            logger.warning(f"Skipping orphan sweep, storage root unavailable: {e}")
            summary['errors'] += 1
            return summary

        backups = Backup.query.filter(Backup.status.in_(TERMINAL_STATUSES)).all()
        for backup in backups:
            summary['checked'] += 1
            if os.path.abspath(backup.archive_path) in present:
                continue

            # Listing can miss files that appeared after it ran
            try:
                if self.storage.exists(backup.archive_path):
                    continue
            except StorageError as e:
                logger.warning(f"Cannot verify archive for backup {backup.id}: {e}")
                summary['errors'] += 1
                continue

            self._remove(backup, reason='sweep')
            summary['deleted'] += 1

        if summary['deleted']:
            logger.info(f"Orphan sweep removed {summary['deleted']} of {summary['checked']} backup records")
        return summary

    def handle_missing(self, path: str) -> int:
        """
        Remove records pointing at an archive that was just deleted or moved away.

        Returns:
            Number of records removed
        """
        target = os.path.abspath(path)
        removed = 0

        candidates = Backup.query.filter(Backup.status.in_(TERMINAL_STATUSES)).all()
        for backup in candidates:
            if os.path.abspath(backup.archive_path) != target:
                continue
            try:
                if self.storage.exists(backup.archive_path):
                    continue
            except StorageError as e:
                logger.warning(f"Cannot verify archive for backup {backup.id}: {e}")
                continue
            self._remove(backup, reason='watch')
            removed += 1

        return removed

    def _remove(self, backup: Backup, reason: str):
        backup_id, volume_id, archive_path = backup.id, backup.volume_id, backup.archive_path
        db.session.delete(backup)
        db.session.commit()

        record_event(
            'warning', 'sync',
            "Backup record removed: archive file no longer exists",
            details={'backupPath': archive_path, 'source': reason},
            volume_id=volume_id, backup_id=backup_id
        )


def reconcile_orphans() -> Optional[Dict[str, Any]]:
    """
    Run one orphan sweep against the configured storage root.

    Called at startup and by the scheduler's periodic job.
    """
    try:
        storage = get_storage(create=False)
    except (ConfigurationError, StorageError) as e:
        logger.warning(f"Orphan sweep skipped: {e}")
        return None
    return OrphanReconciler(storage).sweep()


class _ArchiveRemovalHandler(FileSystemEventHandler):
    """Forwards archive deletions and moves to the reconciler."""

    def __init__(self, watch: 'StorageWatch'):
        super().__init__()
        self.watch = watch

    def on_deleted(self, event):
        if not event.is_directory:
            self.watch.archive_gone(event.src_path)

    def on_moved(self, event):
        if not event.is_directory:
            self.watch.archive_gone(event.src_path)


class StorageWatch:
    """
    Watches the storage root and drops records as soon as their file disappears.

    Network-mounted roots may not deliver events; the periodic sweep covers that.
    """

    def __init__(self, app, storage_path: str):
        self.app = app
        self.storage_path = storage_path
        self._observer = None

    @property
    def running(self) -> bool:
        return self._observer is not None

    def start(self):
        if self._observer is not None:
            logger.info("Storage watch already running")
            return

        observer = Observer()
        observer.schedule(_ArchiveRemovalHandler(self), self.storage_path, recursive=False)
        observer.daemon = True
        observer.start()
        self._observer = observer
        logger.info(f"Watching storage root {self.storage_path}")

    def stop(self):
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join(timeout=5)
        self._observer = None
        logger.info("Storage watch stopped")

    def archive_gone(self, path: str):
        with self.app.app_context():
            try:
                storage = LocalStorage(self.storage_path, create=False)
                removed = OrphanReconciler(storage).handle_missing(path)
                if removed:
                    logger.info(f"Removed {removed} backup record(s) for vanished archive {path}")
            except Exception as e:
                logger.error(f"Failed to reconcile vanished archive {path}: {e}")
                db.session.rollback()
            finally:
                db.session.remove()


def resolve_interrupted() -> Dict[str, int]:
    """
    Fail backups and group runs left in progress by a previous process.

    Only called at startup, before any new work is dispatched.
    """
    now = utcnow()
    summary = {'backups': 0, 'runs': 0}

    for run in ScheduleGroupRun.query.filter_by(status=STATUS_IN_PROGRESS).all():
        run.status = STATUS_FAILED
        run.error_message = INTERRUPTED_MESSAGE
        run.completed_at = now
        summary['runs'] += 1

    for backup in Backup.query.filter_by(status=STATUS_IN_PROGRESS).all():
        backup.status = STATUS_FAILED
        backup.error_message = INTERRUPTED_MESSAGE
        backup.completed_at = now
        summary['backups'] += 1

    db.session.commit()

    if summary['backups'] or summary['runs']:
        record_event(
            'warning', 'system',
            f"Marked {summary['backups']} backups and {summary['runs']} group runs as interrupted",
            details=summary
        )
    return summary
