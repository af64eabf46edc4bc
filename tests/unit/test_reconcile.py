"""
Unit tests for orphan reconciliation (volbackup/backup/reconcile.py).

Tests the full sweep, the watch path and startup recovery of interrupted work.
"""

import os
from unittest.mock import MagicMock, patch

from volbackup.backup.errors import StorageUnavailableError
from volbackup.backup.executor import BackupExecutor
from volbackup.backup.reconcile import (
    INTERRUPTED_MESSAGE,
    OrphanReconciler,
    StorageWatch,
    reconcile_orphans,
    resolve_interrupted
)
from volbackup.backup.storage import LocalStorage
from volbackup.models import (
    AuditLog, Backup, ScheduleGroupRun, STATUS_COMPLETED, STATUS_FAILED, STATUS_IN_PROGRESS
)
from volbackup.utils.clock import utcnow


class TestOrphanSweep:
    """Test OrphanReconciler.sweep()."""

    def test_removes_record_without_file(self, db, storage, volume, make_backup):
        kept = make_backup(volume, name='kept.tar.gz')
        orphan = make_backup(volume, name='orphan.tar.gz')
        os.remove(orphan.archive_path)
        orphan_id = orphan.id

        summary = OrphanReconciler(storage).sweep()

        assert summary == {'checked': 2, 'deleted': 1, 'errors': 0}
        assert db.session.get(Backup, orphan_id) is None
        assert db.session.get(Backup, kept.id) is not None

        event = AuditLog.query.filter_by(category='sync', backup_id=orphan_id).one()
        assert event.level == 'warning'

    def test_ignores_in_progress_records(self, db, storage, volume, make_backup):
        pending = make_backup(volume, status=STATUS_IN_PROGRESS, with_file=False)

        summary = OrphanReconciler(storage).sweep()

        assert summary['checked'] == 0
        assert db.session.get(Backup, pending.id) is not None

    def test_removes_failed_record_without_file(self, db, storage, volume, make_backup):
        failed = make_backup(volume, status=STATUS_FAILED, with_file=False)
        failed_id = failed.id

        summary = OrphanReconciler(storage).sweep()

        assert summary == {'checked': 1, 'deleted': 1, 'errors': 0}
        assert db.session.get(Backup, failed_id) is None

    def test_removes_record_of_failed_execution(self, db, storage, make_volume):
        backup = BackupExecutor(make_volume('ghost', exists=False), storage, notifier=MagicMock()).execute()
        backup_id = backup.id
        assert backup.status == STATUS_FAILED

        summary = OrphanReconciler(storage).sweep()

        assert summary['deleted'] == 1
        assert db.session.get(Backup, backup_id) is None

    def test_unavailable_root_removes_nothing(self, db, volume, make_backup, tmp_path):
        backup = make_backup(volume, with_file=False)
        storage = LocalStorage(str(tmp_path / 'unmounted'), create=False)

        summary = OrphanReconciler(storage).sweep()

        assert summary['deleted'] == 0
        assert summary['errors'] == 1
        assert db.session.get(Backup, backup.id) is not None

    def test_file_missing_from_listing_but_present_is_kept(self, db, volume, make_backup):
        backup = make_backup(volume)
        storage = MagicMock()
        storage.list_archives.return_value = []
        storage.exists.return_value = True

        summary = OrphanReconciler(storage).sweep()

        assert summary['deleted'] == 0
        assert db.session.get(Backup, backup.id) is not None

    def test_files_without_records_are_not_imported(self, db, storage, storage_root):
        (storage_root / 'stray.tar.gz').write_bytes(b'x')

        OrphanReconciler(storage).sweep()

        assert Backup.query.count() == 0
        assert (storage_root / 'stray.tar.gz').exists()


class TestHandleMissing:
    """Test single-path reconciliation used by the storage watch."""

    def test_removes_matching_record(self, db, storage, volume, make_backup):
        backup = make_backup(volume, name='gone.tar.gz')
        other = make_backup(volume, name='other.tar.gz')
        os.remove(backup.archive_path)
        backup_id, path = backup.id, backup.archive_path

        assert OrphanReconciler(storage).handle_missing(path) == 1
        assert db.session.get(Backup, backup_id) is None
        assert db.session.get(Backup, other.id) is not None

    def test_recreated_file_is_kept(self, db, storage, volume, make_backup):
        backup = make_backup(volume)

        assert OrphanReconciler(storage).handle_missing(backup.archive_path) == 0
        assert db.session.get(Backup, backup.id) is not None

    def test_removes_matching_failed_record(self, db, storage, volume, make_backup):
        failed = make_backup(volume, status=STATUS_FAILED, with_file=False)
        failed_id, path = failed.id, failed.archive_path

        assert OrphanReconciler(storage).handle_missing(path) == 1
        assert db.session.get(Backup, failed_id) is None


class TestReconcileOrphans:
    """Test the configured sweep entry point."""

    def test_uses_configured_root(self, db, volume, make_backup):
        orphan = make_backup(volume, with_file=False)

        summary = reconcile_orphans()

        assert summary['deleted'] == 1
        assert db.session.get(Backup, orphan.id) is None

    def test_unconfigured_root(self, app, db):
        app.config['BACKUP_STORAGE_PATH'] = ''
        assert reconcile_orphans() is None

    def test_listing_failure(self, db, volume, make_backup):
        backup = make_backup(volume, with_file=False)
        with patch.object(LocalStorage, 'list_archives', side_effect=StorageUnavailableError('offline')):
            summary = reconcile_orphans()

        assert summary['deleted'] == 0
        assert db.session.get(Backup, backup.id) is not None


class TestStorageWatch:
    """Test the watchdog-backed storage watch."""

    @patch('volbackup.backup.reconcile.Observer')
    def test_start_and_stop(self, mock_observer_class, app, storage_root):
        observer = MagicMock()
        mock_observer_class.return_value = observer
        watch = StorageWatch(app, str(storage_root))

        watch.start()
        watch.start()

        assert watch.running is True
        observer.schedule.assert_called_once()
        observer.start.assert_called_once()

        watch.stop()

        assert watch.running is False
        observer.stop.assert_called_once()

    def test_archive_gone_removes_record(self, app, db, volume, make_backup, storage_root):
        backup = make_backup(volume)
        os.remove(backup.archive_path)
        backup_id, path = backup.id, backup.archive_path

        StorageWatch(app, str(storage_root)).archive_gone(path)

        # The watch works in its own session
        db.session.expire_all()
        assert db.session.get(Backup, backup_id) is None


class TestResolveInterrupted:
    """Test startup recovery."""

    def test_marks_in_progress_work_failed(self, db, volume, make_backup, make_group):
        stale = make_backup(volume, status=STATUS_IN_PROGRESS, with_file=False)
        done = make_backup(volume)
        group = make_group('nightly', [volume])
        run = ScheduleGroupRun(
            group_id=group.id, status=STATUS_IN_PROGRESS,
            current_volume_index=1, total_volumes=1, started_at=utcnow()
        )
        db.session.add(run)
        db.session.commit()

        summary = resolve_interrupted()

        assert summary == {'backups': 1, 'runs': 1}
        stale = db.session.get(Backup, stale.id)
        assert stale.status == STATUS_FAILED
        assert stale.error_message == INTERRUPTED_MESSAGE
        assert stale.completed_at is not None
        assert db.session.get(Backup, done.id).status == STATUS_COMPLETED
        assert db.session.get(ScheduleGroupRun, run.id).status == STATUS_FAILED
        assert AuditLog.query.filter_by(category='system', level='warning').count() == 1

    def test_nothing_to_resolve(self, db):
        assert resolve_interrupted() == {'backups': 0, 'runs': 0}
        assert AuditLog.query.count() == 0
