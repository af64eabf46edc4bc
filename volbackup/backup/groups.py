"""
Group runner - sequences a schedule group's volumes through the executor.

Members run strictly one after another in execution_order. The first failing
member fails the run and the remaining members are left untouched.
"""

import logging
from typing import Optional, List, Dict, Any

from flask import current_app

from volbackup import db
from volbackup.audit import record_event
from volbackup.catalog import get_group, ordered_members
from volbackup.models import (
    Volume, ScheduleGroup, ScheduleGroupRun,
    STATUS_IN_PROGRESS, STATUS_COMPLETED, STATUS_FAILED
)
from volbackup.notifications import notifier as default_notifier, SCHEDULE_GROUP_COMPLETED
from volbackup.tasks import background_tasks
from volbackup.utils.clock import utcnow
from .errors import GroupRunInProgressError, InvalidTransitionError
from .executor import BackupExecutor

logger = logging.getLogger(__name__)

OUTCOME_SKIPPED = 'skipped'


class GroupRunner:
    """
    Drives one ScheduleGroupRun: pending -> in_progress -> completed/failed.
    """

    def __init__(self, group: ScheduleGroup, storage=None, notifier=None):
        """
        Initialize group runner.

        Args:
            group: Group to execute
            storage: Storage handler passed to each BackupExecutor
            notifier: Notifier collaborator (defaults to the global notifier)
        """
        self.group = group
        self.storage = storage
        self.notifier = notifier or default_notifier
        self.run_record = None
        self.members = []
        self.outcomes = []

    def start(self) -> ScheduleGroupRun:
        """
        Snapshot the members and create the in-progress run.

        Raises:
            GroupRunInProgressError: If overlapping runs are disabled and one is in flight
        """
        if not current_app.config.get('ALLOW_CONCURRENT_GROUP_RUNS', True):
            active = ScheduleGroupRun.query.filter_by(
                group_id=self.group.id, status=STATUS_IN_PROGRESS
            ).first()
            if active is not None:
                raise GroupRunInProgressError(
                    f"Group {self.group.name} already has run {active.id} in progress"
                )

        # Later membership edits must not affect this run
        self.members = [
            {'volume_id': m.volume_id, 'volume_name': m.volume.name if m.volume else None}
            for m in ordered_members(self.group.id)
        ]

        self.run_record = ScheduleGroupRun(
            group_id=self.group.id,
            status=STATUS_IN_PROGRESS,
            current_volume_index=0,
            total_volumes=len(self.members),
            started_at=utcnow()
        )
        db.session.add(self.run_record)
        db.session.commit()

        logger.info(f"Started run {self.run_record.id} of group {self.group.name} ({len(self.members)} volumes)")
        record_event(
            'info', 'backup',
            f"Schedule group {self.group.name} started",
            details={'runId': self.run_record.id, 'totalVolumes': len(self.members)},
            group_id=self.group.id
        )
        return self.run_record

    def run(self) -> ScheduleGroupRun:
        """Archive every member in order, stopping at the first failure."""
        if self.run_record is None:
            raise RuntimeError("No group run. Call start() first.")

        run = self.run_record
        self.outcomes = []
        failure = None

        for position, member in enumerate(self.members, start=1):
            run.current_volume_index = position
            db.session.commit()

            outcome = self._run_member(member)
            self.outcomes.append(outcome)

            if outcome['status'] != STATUS_COMPLETED:
                failure = (
                    f"Volume {member['volume_name'] or member['volume_id']} "
                    f"(#{position}) failed: {outcome['error']}"
                )
                break

        for member in self.members[len(self.outcomes):]:
            self.outcomes.append({
                'volume_id': member['volume_id'],
                'volume_name': member['volume_name'],
                'status': OUTCOME_SKIPPED,
                'backup_id': None,
                'error': None,
            })

        if failure is None:
            self._finish(STATUS_COMPLETED)
        else:
            self._finish(STATUS_FAILED, failure)

        self._notify_summary()
        return run

    def execute(self) -> ScheduleGroupRun:
        self.start()
        return self.run()

    def _run_member(self, member: Dict[str, Any]) -> Dict[str, Any]:
        outcome = {
            'volume_id': member['volume_id'],
            'volume_name': member['volume_name'],
            'status': STATUS_FAILED,
            'backup_id': None,
            'error': None,
        }

        volume = db.session.get(Volume, member['volume_id'])
        if volume is None:
            outcome['error'] = "Volume no longer exists"
            return outcome

        executor = BackupExecutor(volume, storage=self.storage, notifier=self.notifier)
        try:
            backup = executor.execute()
        except Exception as e:
            db.session.rollback()
            logger.error(f"Group {self.group.name}: backup of {volume.name} could not start: {e}")
            outcome['error'] = str(e)
            return outcome

        outcome['backup_id'] = backup.id
        outcome['status'] = backup.status
        outcome['error'] = backup.error_message
        return outcome

    def _finish(self, status: str, error_message: Optional[str] = None):
        run = self.run_record
        if run.is_terminal:
            raise InvalidTransitionError(f"Group run {run.id} is already {run.status}")

        run.status = status
        run.completed_at = utcnow()
        run.error_message = error_message
        if status == STATUS_COMPLETED:
            self.group.last_run = run.completed_at
        db.session.commit()

        if status == STATUS_COMPLETED:
            record_event(
                'success', 'backup',
                f"Schedule group {self.group.name} completed",
                details={'runId': run.id, 'totalVolumes': run.total_volumes},
                group_id=self.group.id
            )
        else:
            record_event(
                'error', 'backup',
                f"Schedule group {self.group.name} failed",
                details={'runId': run.id, 'error': error_message},
                group_id=self.group.id
            )

    def _notify_summary(self):
        run = self.run_record
        duration = (run.completed_at - run.started_at).total_seconds()
        self.notifier.notify(SCHEDULE_GROUP_COMPLETED, {
            'group_id': self.group.id,
            'group_name': self.group.name,
            'run_id': run.id,
            'status': run.status,
            'results': list(self.outcomes),
            'started_at': run.started_at.isoformat(),
            'completed_at': run.completed_at.isoformat(),
            'duration_seconds': duration,
        })


def run_group_task(run_id: int, members: Optional[List[Dict[str, Any]]] = None) -> Optional[ScheduleGroupRun]:
    """
    Background task body: continue a run created by GroupRunner.start().

    Args:
        run_id: The in-progress run
        members: Member snapshot taken at start (re-read from the group if omitted)
    """
    run = db.session.get(ScheduleGroupRun, run_id)
    if run is None:
        logger.warning(f"Group run {run_id} disappeared before it started")
        return None

    runner = GroupRunner(run.group)
    runner.run_record = run
    if members is None:
        members = [
            {'volume_id': m.volume_id, 'volume_name': m.volume.name if m.volume else None}
            for m in ordered_members(run.group_id)
        ]
    runner.members = members
    return runner.run()


def trigger_group_run(group_id: int) -> ScheduleGroupRun:
    """
    Start a run of a schedule group.

    Returns the in-progress run immediately; members are archived in the
    background.

    Raises:
        NotFoundError: If the group does not exist
        GroupRunInProgressError: If overlapping runs are disabled and one is in flight
    """
    group = get_group(group_id)
    runner = GroupRunner(group)
    run = runner.start()

    background_tasks.spawn(run_group_task, run.id, list(runner.members), name=f"group-run-{run.id}")
    return run


def list_group_runs(group_id: int, limit: int = 50) -> List[ScheduleGroupRun]:
    """Most recent runs of a group, newest first."""
    get_group(group_id)
    return ScheduleGroupRun.query.filter_by(group_id=group_id).order_by(
        ScheduleGroupRun.started_at.desc(), ScheduleGroupRun.id.desc()
    ).limit(limit).all()
