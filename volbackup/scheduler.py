"""
APScheduler configuration and the periodic driver for volbackup.

Manages:
- The 60-second tick evaluating every enabled schedule and schedule group
- The periodic orphan sweep
- The hourly retention sweep
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.executors.pool import ThreadPoolExecutor

from volbackup import db
from volbackup.audit import record_event
from volbackup.models import Schedule, ScheduleGroup
from volbackup.recurrence import is_due
from volbackup.utils.clock import utcnow

logger = logging.getLogger(__name__)

TICK_JOB_ID = 'schedule_tick'
RECONCILE_JOB_ID = 'orphan_sweep'
RETENTION_JOB_ID = 'retention_sweep'


class Scheduler:
    """
    Owns the timers of the process.

    `start()` and `stop()` are idempotent. `tick()` can be called directly
    (with an app context) to evaluate schedules once.
    """

    def __init__(self, app=None):
        self.app = None
        self._scheduler: Optional[BackgroundScheduler] = None
        self._running = False
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        self.app = app
        app.extensions['volbackup_scheduler'] = self

    @property
    def running(self) -> bool:
        return self._running

    def start(self):
        """Start the timers; a second call only logs."""
        if self.app is None:
            raise RuntimeError("Scheduler not initialized. Call init_app() first.")

        if self._running:
            logger.info("Scheduler already running")
            return

        config = self.app.config
        scheduler = BackgroundScheduler(
            executors={'default': ThreadPoolExecutor(max_workers=3)},
            job_defaults={
                'coalesce': True,  # Combine multiple pending instances into one
                'max_instances': 1,  # Only one instance of a job at a time
                'misfire_grace_time': 30
            },
            timezone=config.get('SCHEDULER_TIMEZONE', 'UTC')
        )

        scheduler.add_job(
            func=self._run_job,
            args=[self.tick],
            trigger=IntervalTrigger(seconds=config.get('SCHEDULER_TICK_SECONDS', 60)),
            id=TICK_JOB_ID,
            name='Schedule Tick',
            next_run_time=datetime.now(timezone.utc),
            replace_existing=True
        )
        scheduler.add_job(
            func=self._run_job,
            args=[self._reconcile],
            trigger=IntervalTrigger(seconds=config.get('RECONCILE_INTERVAL_SECONDS', 60)),
            id=RECONCILE_JOB_ID,
            name='Orphan Sweep',
            replace_existing=True
        )
        scheduler.add_job(
            func=self._run_job,
            args=[self._retention],
            trigger=IntervalTrigger(seconds=config.get('RETENTION_INTERVAL_SECONDS', 3600)),
            id=RETENTION_JOB_ID,
            name='Retention Sweep',
            replace_existing=True
        )

        scheduler.start()
        self._scheduler = scheduler
        self._running = True

        logger.info(f"Scheduler started with {len(scheduler.get_jobs())} jobs")
        for job in self.jobs():
            logger.info(f"  - {job['id']}: {job['name']} (next run: {job['next_run'] or 'N/A'})")

    def stop(self):
        """Stop the timers; no-op when not running."""
        if not self._running:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        self._running = False
        logger.info("Scheduler stopped")

    def jobs(self) -> List[Dict[str, Any]]:
        """
        Get list of scheduled jobs.

        Returns:
            List of dicts with job information
        """
        if self._scheduler is None:
            return []

        return [
            {
                'id': job.id,
                'name': job.name,
                'next_run': job.next_run_time.isoformat() if job.next_run_time else None,
                'trigger': str(job.trigger)
            }
            for job in self._scheduler.get_jobs()
        ]

    def _run_job(self, func):
        """Run a timer callback inside the app context."""
        with self.app.app_context():
            try:
                func()
            except Exception as e:
                logger.exception(f"Scheduler job {getattr(func, '__name__', func)} failed: {e}")
                db.session.rollback()
            finally:
                db.session.remove()

    def tick(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Evaluate every enabled schedule and group once and dispatch those due.

        A failure for one item is logged and never stops the others.

        Returns:
            Dict with 'dispatched' and 'failed' counts
        """
        now = now or utcnow()
        summary = {'dispatched': 0, 'failed': 0}

        schedule_ids = [s.id for s in Schedule.query.filter_by(enabled=True).all()]
        group_ids = [g.id for g in ScheduleGroup.query.filter_by(enabled=True).all()]

        for schedule_id in schedule_ids:
            self._evaluate(Schedule, schedule_id, now, summary)

        for group_id in group_ids:
            self._evaluate(ScheduleGroup, group_id, now, summary)

        if summary['dispatched'] or summary['failed']:
            logger.info(f"Tick at {now.isoformat()}: {summary['dispatched']} dispatched, {summary['failed']} failed")
        return summary

    def _evaluate(self, model, item_id: int, now: datetime, summary: Dict[str, int]):
        item = db.session.get(model, item_id)
        if item is None or not item.enabled:
            return

        is_group = model is ScheduleGroup
        label = f"group {item.name}" if is_group else f"schedule {item.id}"
        # Read before dispatch; a rollback expires the instance
        frequency, time_of_day = item.frequency, item.time
        volume_id = None if is_group else item.volume_id
        group_id = item.id if is_group else None

        try:
            if not is_due(frequency, time_of_day, item.last_run, now):
                return

            if is_group:
                self._dispatch_group(item)
            else:
                self._dispatch_schedule(item)

            # Stamped at dispatch so a slow archival cannot re-fire in the same window
            item.last_run = now
            db.session.commit()
            summary['dispatched'] += 1

        except Exception as e:
            db.session.rollback()
            summary['failed'] += 1
            logger.error(f"Failed to dispatch {label}: {e}")
            record_event(
                'error', 'schedule',
                f"Scheduled dispatch failed for {label}",
                details={'error': str(e), 'frequency': frequency, 'time': time_of_day},
                volume_id=volume_id,
                group_id=group_id
            )

    def _dispatch_schedule(self, schedule: Schedule):
        from volbackup.backup.executor import trigger_backup

        volume_id = schedule.volume_id
        backup = trigger_backup(volume_id)
        record_event(
            'info', 'schedule',
            f"Scheduled backup triggered ({schedule.frequency} at {schedule.time})",
            details={'scheduleId': schedule.id, 'backupId': backup.id},
            volume_id=volume_id, backup_id=backup.id
        )

    def _dispatch_group(self, group: ScheduleGroup):
        from volbackup.backup.groups import trigger_group_run

        group_id, group_name = group.id, group.name
        run = trigger_group_run(group_id)
        record_event(
            'info', 'schedule',
            f"Scheduled group run triggered for {group_name}",
            details={'runId': run.id},
            group_id=group_id
        )

    @staticmethod
    def _reconcile():
        from volbackup.backup.reconcile import reconcile_orphans
        reconcile_orphans()

    @staticmethod
    def _retention():
        from volbackup.backup.retention import enforce_retention_policy
        enforce_retention_policy()


# Global scheduler, bound to the app in create_app()
scheduler = Scheduler()
