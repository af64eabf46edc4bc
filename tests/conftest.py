"""
Shared pytest fixtures for volbackup tests.

This module provides fixtures for:
- Flask app and test client
- Database setup with in-memory SQLite
- User and authentication fixtures
- Volume, schedule and group fixtures backed by real directories
- A recording notification handler
"""

from datetime import timedelta

import pytest

from volbackup import create_app, db as _db
from volbackup.auth import hash_password, INTERNAL_TOKEN_HEADER
from volbackup.backup.storage import LocalStorage
from volbackup.models import (
    User, Volume, Backup, Schedule, ScheduleGroup, ScheduleGroupMember, STATUS_COMPLETED
)
from volbackup.notifications import notifier
from volbackup.utils.clock import utcnow


@pytest.fixture(scope='function')
def storage_root(tmp_path):
    """Empty storage root for archives."""
    root = tmp_path / 'backups'
    root.mkdir()
    return root


@pytest.fixture(scope='function')
def app(storage_root):
    """
    Create Flask app with test configuration.

    Uses in-memory SQLite database, inline background tasks and no timers.
    """
    app = create_app('testing')
    app.config.update({
        'BACKUP_STORAGE_PATH': str(storage_root),
    })

    yield app


@pytest.fixture(scope='function')
def db(app):
    """
    Create database with all tables.

    Each test gets a fresh database.
    """
    with app.app_context():
        _db.create_all()
        yield _db
        _db.session.remove()
        _db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Flask test client for making HTTP requests."""
    return app.test_client()


@pytest.fixture(scope='function')
def storage(storage_root):
    return LocalStorage(str(storage_root))


@pytest.fixture(scope='function')
def admin_user(db):
    """
    Create an admin user for testing authentication.

    Username: admin
    Password: Admin123
    """
    user = User(
        username='admin',
        password_hash=hash_password('Admin123')
    )
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture(scope='function')
def auth_client(client, admin_user):
    """Test client with a logged-in session."""
    response = client.post('/api/auth/login', json={'username': 'admin', 'password': 'Admin123'})
    assert response.status_code == 200
    return client


@pytest.fixture
def internal_headers(app):
    """Headers carrying the internal scheduler credential."""
    return {INTERNAL_TOKEN_HEADER: app.config['INTERNAL_SCHEDULER_TOKEN']}


def make_source_tree(root):
    """
    Create a small directory tree to back up.

    Creates:
    - a.txt
    - nested/b.txt
    - nested/deeper/c.bin
    """
    root.mkdir(parents=True, exist_ok=True)
    (root / 'a.txt').write_text('alpha')
    (root / 'nested').mkdir(exist_ok=True)
    (root / 'nested' / 'b.txt').write_text('bravo')
    (root / 'nested' / 'deeper').mkdir(exist_ok=True)
    (root / 'nested' / 'deeper' / 'c.bin').write_bytes(bytes(range(256)) * 8)
    return root


@pytest.fixture
def source_dir(tmp_path):
    return make_source_tree(tmp_path / 'sources' / 'appdata')


@pytest.fixture
def volume(db, source_dir):
    volume = Volume(name='appdata', path=str(source_dir))
    db.session.add(volume)
    db.session.commit()
    return volume


@pytest.fixture
def make_volume(db, tmp_path):
    """Factory creating a volume with its own source tree (or a missing path)."""
    def _make(name, exists=True):
        path = tmp_path / 'sources' / name
        if exists:
            make_source_tree(path)
        volume = Volume(name=name, path=str(path))
        db.session.add(volume)
        db.session.commit()
        return volume
    return _make


@pytest.fixture
def make_backup(db, storage_root):
    """
    Factory creating a completed backup record, optionally with its archive file.
    """
    def _make(volume, age_days=0, with_file=True, status=STATUS_COMPLETED, name=None):
        completed_at = utcnow() - timedelta(days=age_days)
        archive_path = storage_root / (name or f"{volume.name}_{completed_at.strftime('%Y%m%d%H%M%S%f')}.tar.gz")
        if with_file:
            archive_path.write_bytes(b'archive')
        backup = Backup(
            volume_id=volume.id,
            archive_path=str(archive_path),
            size_bytes=7 if with_file else 0,
            status=status,
            started_at=completed_at,
            completed_at=completed_at if status == STATUS_COMPLETED else None
        )
        db.session.add(backup)
        db.session.commit()
        return backup
    return _make


@pytest.fixture
def schedule(db, volume):
    schedule = Schedule(volume_id=volume.id, frequency='daily', time='02:00', enabled=True)
    db.session.add(schedule)
    db.session.commit()
    return schedule


@pytest.fixture
def make_group(db):
    """Factory creating a schedule group with members in the given order."""
    def _make(name, volumes, frequency='daily', time='03:00', enabled=True):
        group = ScheduleGroup(name=name, frequency=frequency, time=time, enabled=enabled)
        db.session.add(group)
        db.session.flush()
        for order, volume in enumerate(volumes):
            db.session.add(ScheduleGroupMember(group_id=group.id, volume_id=volume.id, execution_order=order))
        db.session.commit()
        return group
    return _make


@pytest.fixture
def notifications():
    """Record every event delivered to the global notifier."""
    events = []

    def _record(event_type, payload):
        events.append((event_type, payload))

    notifier.register(_record)
    yield events
    notifier.unregister(_record)
