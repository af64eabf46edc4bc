"""
Unit tests for the group runner (volbackup/backup/groups.py).
"""

from unittest.mock import patch

import pytest

from volbackup.backup.errors import GroupRunInProgressError, InvalidTransitionError, NotFoundError
from volbackup.backup.groups import GroupRunner, trigger_group_run, list_group_runs
from volbackup.models import (
    Backup, ScheduleGroupMember, ScheduleGroupRun, STATUS_COMPLETED, STATUS_FAILED, STATUS_IN_PROGRESS
)
from volbackup.notifications import SCHEDULE_GROUP_COMPLETED


@pytest.fixture
def abc_volumes(make_volume):
    return [make_volume('alpha'), make_volume('bravo'), make_volume('charlie')]


class TestGroupRunnerSuccess:
    """Test runs where every member succeeds."""

    def test_all_members_succeed(self, db, abc_volumes, make_group, notifications):
        group = make_group('nightly', abc_volumes)

        run = GroupRunner(group).execute()

        assert run.status == STATUS_COMPLETED
        assert run.current_volume_index == run.total_volumes == 3
        assert run.completed_at is not None
        assert run.error_message is None
        assert group.last_run == run.completed_at
        assert Backup.query.filter_by(status=STATUS_COMPLETED).count() == 3

        summaries = [p for e, p in notifications if e == SCHEDULE_GROUP_COMPLETED]
        assert len(summaries) == 1
        assert summaries[0]['group_name'] == 'nightly'
        assert [r['status'] for r in summaries[0]['results']] == [STATUS_COMPLETED] * 3
        assert summaries[0]['duration_seconds'] >= 0

    def test_members_run_in_execution_order(self, db, abc_volumes, make_group):
        alpha, bravo, charlie = abc_volumes
        group = make_group('ordered', [charlie, alpha, bravo])

        GroupRunner(group).execute()

        backups = Backup.query.order_by(Backup.id.asc()).all()
        assert [b.volume_id for b in backups] == [charlie.id, alpha.id, bravo.id]

    def test_index_advances_before_each_member(self, db, abc_volumes, make_group):
        group = make_group('progress', abc_volumes)
        runner = GroupRunner(group)
        runner.start()
        seen = []

        original = runner._run_member

        def spy(member):
            seen.append(runner.run_record.current_volume_index)
            return original(member)

        with patch.object(runner, '_run_member', side_effect=spy):
            runner.run()

        assert seen == [1, 2, 3]

    def test_empty_group_completes(self, db, make_group):
        group = make_group('empty', [])

        run = GroupRunner(group).execute()

        assert run.status == STATUS_COMPLETED
        assert run.total_volumes == 0
        assert run.current_volume_index == 0


class TestGroupRunnerFailure:
    """Test fail-fast behaviour."""

    def test_middle_member_failure_stops_run(self, db, make_volume, make_group, notifications):
        alpha = make_volume('alpha')
        bravo = make_volume('bravo', exists=False)
        charlie = make_volume('charlie')
        group = make_group('nightly', [alpha, bravo, charlie])

        run = GroupRunner(group).execute()

        assert run.status == STATUS_FAILED
        assert run.current_volume_index == 2
        assert 'bravo' in run.error_message
        assert run.completed_at is not None
        assert group.last_run is None
        assert Backup.query.filter_by(volume_id=charlie.id).count() == 0
        assert Backup.query.filter_by(volume_id=bravo.id, status=STATUS_FAILED).count() == 1

        summary = [p for e, p in notifications if e == SCHEDULE_GROUP_COMPLETED][0]
        assert [r['status'] for r in summary['results']] == [STATUS_COMPLETED, STATUS_FAILED, 'skipped']

    def test_member_that_cannot_start_fails_run(self, app, db, abc_volumes, make_group):
        group = make_group('nightly', abc_volumes)
        app.config['BACKUP_STORAGE_PATH'] = ''

        run = GroupRunner(group).execute()

        assert run.status == STATUS_FAILED
        assert run.current_volume_index == 1
        assert Backup.query.count() == 0

    def test_finished_run_is_immutable(self, db, abc_volumes, make_group):
        group = make_group('nightly', abc_volumes)
        runner = GroupRunner(group)
        runner.execute()

        with pytest.raises(InvalidTransitionError):
            runner._finish(STATUS_FAILED, 'again')


class TestTriggerGroupRun:
    """Test the group trigger surface."""

    def test_trigger_creates_run(self, db, abc_volumes, make_group):
        group = make_group('nightly', abc_volumes)

        with patch('volbackup.backup.groups.background_tasks') as mock_tasks:
            run = trigger_group_run(group.id)

        assert run.status == STATUS_IN_PROGRESS
        assert run.current_volume_index == 0
        assert run.total_volumes == 3
        mock_tasks.spawn.assert_called_once()

    def test_trigger_runs_inline_in_tests(self, db, abc_volumes, make_group):
        group = make_group('nightly', abc_volumes)

        run = trigger_group_run(group.id)

        assert db.session.get(ScheduleGroupRun, run.id).status == STATUS_COMPLETED

    def test_membership_change_after_start_does_not_affect_run(self, db, abc_volumes, make_group):
        group = make_group('nightly', abc_volumes)
        with patch('volbackup.backup.groups.background_tasks') as mock_tasks:
            run = trigger_group_run(group.id)
        members = mock_tasks.spawn.call_args[0][2]

        ScheduleGroupMember.query.filter_by(group_id=group.id, volume_id=abc_volumes[2].id).delete()
        db.session.commit()

        from volbackup.backup.groups import run_group_task
        finished = run_group_task(run.id, members)

        assert finished.current_volume_index == 3
        assert Backup.query.count() == 3

    def test_trigger_unknown_group(self, db):
        with pytest.raises(NotFoundError):
            trigger_group_run(999)

    def test_concurrent_runs_allowed_by_default(self, db, abc_volumes, make_group):
        group = make_group('nightly', abc_volumes)
        with patch('volbackup.backup.groups.background_tasks'):
            first = trigger_group_run(group.id)
            second = trigger_group_run(group.id)
        assert first.id != second.id

    def test_in_flight_guard(self, app, db, abc_volumes, make_group):
        app.config['ALLOW_CONCURRENT_GROUP_RUNS'] = False
        group = make_group('nightly', abc_volumes)

        with patch('volbackup.backup.groups.background_tasks'):
            trigger_group_run(group.id)
            with pytest.raises(GroupRunInProgressError):
                trigger_group_run(group.id)

    def test_list_runs_newest_first(self, db, abc_volumes, make_group):
        group = make_group('nightly', abc_volumes[:1])
        first = trigger_group_run(group.id)
        second = trigger_group_run(group.id)

        assert [r.id for r in list_group_runs(group.id)] == [second.id, first.id]
