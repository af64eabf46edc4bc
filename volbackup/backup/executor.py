"""
Backup executor - runs one archival operation through its lifecycle.

Workflow:
1. Create Backup record (status: in_progress, archive path computed)
2. Archive the volume's source tree into the storage root
3. Measure the produced archive
4. Finalize the record (status: completed/failed); notify on failure

`trigger_backup()` performs step 1 synchronously and hands steps 2-4 to a
detached background task. GroupRunner calls `BackupExecutor.execute()` to run
all four steps in sequence.
"""

import os
import logging
from typing import Optional, List, Dict, Any

from volbackup import db
from volbackup.audit import record_event
from volbackup.catalog import get_volume, get_backup, list_backups as _list_backups
from volbackup.models import (
    Volume, Backup, STATUS_IN_PROGRESS, STATUS_COMPLETED, STATUS_FAILED
)
from volbackup.notifications import notifier as default_notifier, BACKUP_FAILED, RESTORE_COMPLETED
from volbackup.tasks import background_tasks
from volbackup.utils.clock import utcnow
from .compression import create_volume_archive, list_archive_entries, extract_archive
from .errors import InvalidTransitionError, PreconditionError, StorageError
from .storage import LocalStorage, get_storage

logger = logging.getLogger(__name__)

RESTORE_MODES = ('full', 'selective')


def finalize_backup(backup: Backup, status: str, size_bytes: int = 0, error_message: Optional[str] = None):
    """
    Move a backup to its terminal status. Happens exactly once per record.

    Raises:
        InvalidTransitionError: If the backup is already completed or failed
    """
    if backup.is_terminal:
        raise InvalidTransitionError(
            f"Backup {backup.id} is already {backup.status}; refusing to set {status}"
        )

    backup.status = status
    backup.completed_at = utcnow()
    if status == STATUS_COMPLETED:
        backup.size_bytes = size_bytes
    else:
        backup.error_message = error_message
    db.session.commit()


class BackupExecutor:
    """
    Runs the archival of one volume.
    """

    def __init__(self, volume: Volume, storage: Optional[LocalStorage] = None, notifier=None):
        """
        Initialize backup executor.

        Args:
            volume: Volume to archive
            storage: Storage handler (defaults to the configured storage root)
            notifier: Notifier collaborator (defaults to the global notifier)
        """
        self.volume = volume
        self.storage = storage
        self.notifier = notifier or default_notifier
        self.backup = None
        self.warnings = []

    def create_record(self) -> Backup:
        """
        Create the in-progress Backup record.

        Raises:
            ConfigurationError: If the storage root is not configured
            StorageUnavailableError: If the storage root cannot be created
        """
        if self.storage is None:
            self.storage = get_storage()

        now = utcnow()
        self.backup = Backup(
            volume_id=self.volume.id,
            archive_path=self.storage.archive_path_for(self.volume.name, now),
            status=STATUS_IN_PROGRESS,
            started_at=now
        )
        db.session.add(self.backup)
        db.session.commit()

        logger.info(f"Created backup {self.backup.id} for volume {self.volume.name}: {self.backup.archive_path}")
        return self.backup

    def attach(self, backup: Backup):
        """Resume work on a record created elsewhere (e.g. by trigger_backup)."""
        self.backup = backup
        if self.storage is None:
            self.storage = get_storage()

    def archive(self) -> Backup:
        """
        Archive, measure and finalize the attached record.

        Never raises for archival problems: they end up on the record.
        """
        if self.backup is None:
            raise RuntimeError("No backup record. Call create_record() first.")

        backup = self.backup
        try:
            self.warnings = create_volume_archive(self.volume.path, backup.archive_path)
            size_bytes = self.storage.size(backup.archive_path)
        except Exception as e:
            error_message = str(e) or e.__class__.__name__
            self._fail(error_message)
            return backup

        finalize_backup(backup, STATUS_COMPLETED, size_bytes=size_bytes)

        details = {'backupPath': backup.archive_path, 'sizeBytes': size_bytes}
        if self.warnings:
            details['warnings'] = [str(w) for w in self.warnings]
        record_event(
            'success', 'backup',
            f"Backup completed for volume {self.volume.name}",
            details=details, volume_id=self.volume.id, backup_id=backup.id
        )
        return backup

    def execute(self) -> Backup:
        """Create the record and archive synchronously."""
        self.create_record()
        return self.archive()

    def _fail(self, error_message: str):
        backup = self.backup
        db.session.rollback()
        finalize_backup(backup, STATUS_FAILED, error_message=error_message)

        record_event(
            'error', 'backup',
            f"Backup failed for volume {self.volume.name}",
            details={'backupPath': backup.archive_path, 'error': error_message},
            volume_id=self.volume.id, backup_id=backup.id
        )
        self.notifier.notify(BACKUP_FAILED, {
            'volume_id': self.volume.id,
            'volume_name': self.volume.name,
            'backup_id': backup.id,
            'error_message': error_message,
            'failed_at': backup.completed_at.isoformat(),
        })


def run_backup_task(backup_id: int):
    """Background task body for a triggered backup."""
    backup = db.session.get(Backup, backup_id)
    if backup is None:
        logger.warning(f"Backup {backup_id} disappeared before archiving started")
        return None

    executor = BackupExecutor(backup.volume)
    try:
        executor.attach(backup)
    except Exception as e:
        finalize_backup(backup, STATUS_FAILED, error_message=str(e))
        return backup
    return executor.archive()


def trigger_backup(volume_id: int) -> Backup:
    """
    Start a backup of a volume.

    Returns the in-progress record immediately; archiving continues in the
    background.

    Raises:
        NotFoundError: If the volume does not exist
        ConfigurationError: If the storage root is not configured
    """
    volume = get_volume(volume_id)

    executor = BackupExecutor(volume)
    backup = executor.create_record()

    record_event(
        'info', 'backup',
        f"Backup started for volume {volume.name}",
        details={'backupPath': backup.archive_path},
        volume_id=volume.id, backup_id=backup.id
    )

    background_tasks.spawn(run_backup_task, backup.id, name=f"backup-{backup.id}")
    return backup


def list_backups(volume_id: Optional[int] = None) -> List[Backup]:
    return _list_backups(volume_id)


def delete_backup(backup_id: int):
    """
    Delete a backup's archive file and its record.

    A missing file counts as deleted. The record is removed even if the file
    could not be.
    """
    backup = get_backup(backup_id)
    storage = get_storage(create=False)

    try:
        removed = storage.delete(backup.archive_path)
        if not removed:
            logger.info(f"Archive already absent: {backup.archive_path}")
    except StorageError as e:
        logger.warning(f"Failed to delete archive for backup {backup_id}: {e}")
        record_event(
            'warning', 'backup',
            "Archive file could not be deleted; removing catalog entry anyway",
            details={'backupPath': backup.archive_path, 'error': str(e)},
            volume_id=backup.volume_id, backup_id=backup.id
        )

    volume_id = backup.volume_id
    archive_path = backup.archive_path
    db.session.delete(backup)
    db.session.commit()

    record_event(
        'info', 'backup', "Backup deleted",
        details={'backupPath': archive_path}, volume_id=volume_id, backup_id=backup_id
    )


def _require_completed(backup: Backup):
    if backup.status != STATUS_COMPLETED:
        raise PreconditionError(f"Backup {backup.id} is not completed (status: {backup.status})")
    if not os.path.exists(backup.archive_path):
        raise PreconditionError(f"Archive file is missing: {backup.archive_path}")


def get_backup_contents(backup_id: int) -> List[Dict[str, Any]]:
    """
    List entries of a completed backup's archive.

    Raises:
        NotFoundError: If the backup does not exist
        PreconditionError: If the backup is not completed
    """
    backup = get_backup(backup_id)
    _require_completed(backup)
    return list_archive_entries(backup.archive_path)


def restore_backup(backup_id: int, mode: str = 'full', options: Optional[Dict[str, Any]] = None,
                   wait: bool = False) -> Dict[str, Any]:
    """
    Restore a completed backup.

    Args:
        backup_id: Backup to restore
        mode: 'full' restores everything, 'selective' only options['paths']
        options: 'custom_path' (destination instead of the volume path) and
            'paths' (entry paths for selective mode)
        wait: Run the extraction inline instead of in the background

    Returns:
        Dict describing the restore

    Raises:
        NotFoundError: If the backup does not exist
        PreconditionError: If the backup is not completed, or the request is invalid
    """
    options = options or {}
    backup = get_backup(backup_id)

    if mode not in RESTORE_MODES:
        raise PreconditionError(f"Invalid restore mode: {mode}. Valid options: {list(RESTORE_MODES)}")

    _require_completed(backup)

    destination = options.get('custom_path') or backup.volume.path
    paths = None
    if mode == 'selective':
        paths = [p for p in (options.get('paths') or []) if p]
        if not paths:
            raise PreconditionError("Selective restore requires at least one path")

    result = {
        'backup_id': backup.id,
        'mode': mode,
        'destination': destination,
        'paths': paths,
    }

    if wait:
        restored = perform_restore(backup.id, mode, destination, paths)
        result.update(status=STATUS_COMPLETED, restored=len(restored))
    else:
        background_tasks.spawn(perform_restore, backup.id, mode, destination, paths,
                               name=f"restore-{backup.id}")
        result['status'] = STATUS_IN_PROGRESS

    return result


def perform_restore(backup_id: int, mode: str, destination: str, paths: Optional[List[str]] = None) -> List[str]:
    """Extract a backup into its destination and emit the completion event."""
    backup = get_backup(backup_id)
    volume = backup.volume

    try:
        restored = extract_archive(backup.archive_path, destination, paths)
    except Exception as e:
        record_event(
            'error', 'restore', f"Restore failed for volume {volume.name}",
            details={'backupId': backup.id, 'destination': destination, 'error': str(e)},
            volume_id=volume.id, backup_id=backup.id
        )
        raise

    record_event(
        'success', 'restore', f"Restore completed for volume {volume.name}",
        details={'mode': mode, 'destination': destination, 'entries': len(restored)},
        volume_id=volume.id, backup_id=backup.id
    )
    default_notifier.notify(RESTORE_COMPLETED, {
        'volume_name': volume.name,
        'backup_id': backup.id,
        'backup_date': backup.completed_at.isoformat() if backup.completed_at else None,
        'restore_type': mode,
        'destination': destination,
        'selected_files': paths or [],
    })
    return restored
