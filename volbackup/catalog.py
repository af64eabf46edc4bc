"""
Catalog access helpers.

Every multi-row mutation goes through `atomic()`: the block's changes are
committed together or rolled back together. Lookups raise NotFoundError
instead of returning None so callers can surface a rejection directly.
"""

from contextlib import contextmanager
from typing import List, Optional

from volbackup import db
from volbackup.models import (
    Volume, Backup, Schedule, ScheduleGroup, ScheduleGroupMember, ScheduleGroupRun
)
from volbackup.backup.errors import NotFoundError


@contextmanager
def atomic():
    """Commit the enclosed changes as one transaction, rolling back on error."""
    try:
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def _get(model, object_id, label):
    obj = db.session.get(model, object_id) if object_id is not None else None
    if obj is None:
        raise NotFoundError(f"{label} not found: {object_id}")
    return obj


def get_volume(volume_id) -> Volume:
    return _get(Volume, volume_id, 'Volume')


def get_backup(backup_id) -> Backup:
    return _get(Backup, backup_id, 'Backup')


def get_schedule(schedule_id) -> Schedule:
    return _get(Schedule, schedule_id, 'Schedule')


def get_group(group_id) -> ScheduleGroup:
    return _get(ScheduleGroup, group_id, 'Schedule group')


def get_group_run(run_id) -> ScheduleGroupRun:
    return _get(ScheduleGroupRun, run_id, 'Schedule group run')


def ordered_members(group_id) -> List[ScheduleGroupMember]:
    """Snapshot a group's members in execution order."""
    return ScheduleGroupMember.query.filter_by(group_id=group_id).order_by(
        ScheduleGroupMember.execution_order.asc()
    ).all()


def replace_group_members(group: ScheduleGroup, volume_ids: List[int]):
    """
    Replace a group's member list; execution_order follows list position.

    Must run inside `atomic()` together with any other group change.

    Raises:
        NotFoundError: If a volume does not exist
        ValueError: If a volume is listed twice
    """
    if len(set(volume_ids)) != len(volume_ids):
        raise ValueError("A volume can only appear once in a group")

    for volume_id in volume_ids:
        get_volume(volume_id)

    ScheduleGroupMember.query.filter_by(group_id=group.id).delete(synchronize_session='fetch')
    db.session.flush()

    for order, volume_id in enumerate(volume_ids):
        db.session.add(ScheduleGroupMember(
            group_id=group.id,
            volume_id=volume_id,
            execution_order=order
        ))
    db.session.flush()
    db.session.expire(group, ['members'])


def list_backups(volume_id: Optional[int] = None) -> List[Backup]:
    """Backups newest first, optionally restricted to one volume."""
    query = Backup.query
    if volume_id is not None:
        query = query.filter(Backup.volume_id == volume_id)
    return query.order_by(Backup.created_at.desc(), Backup.id.desc()).all()
