"""
Supervised registry for detached background work.

Archival, group runs and restores outlive the request or scheduler tick that
started them. They run on a thread pool inside the Flask app context; the
registry keeps track of in-flight futures so shutdown can drain them.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, Future, wait
from typing import Callable, Optional, Set

from flask import has_app_context

from volbackup import db

logger = logging.getLogger(__name__)


class BackgroundTasks:
    """Thread pool with a registry of in-flight tasks."""

    def __init__(self):
        self.app = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._futures: Set[Future] = set()
        self._lock = threading.Lock()
        self._eager = False

    def init_app(self, app):
        self.app = app
        self._eager = app.config.get('BACKGROUND_TASKS_EAGER', False)
        if not self._eager and self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=app.config.get('BACKGROUND_TASK_WORKERS', 4),
                thread_name_prefix='volbackup-task'
            )

    def spawn(self, func: Callable, *args, name: Optional[str] = None, **kwargs) -> Optional[Future]:
        """
        Run `func(*args, **kwargs)` detached, inside the app context.

        In eager mode the call runs inline and None is returned.
        """
        if self.app is None:
            raise RuntimeError("Background tasks not initialized. Call init_app() first.")

        task_name = name or getattr(func, '__name__', 'task')

        if self._eager:
            if has_app_context():
                # Share the caller's context and session
                self._call(func, task_name, args, kwargs)
            else:
                self._run(func, task_name, args, kwargs)
            return None

        if self._executor is None:
            raise RuntimeError("Background task pool has been shut down")

        future = self._executor.submit(self._run, func, task_name, args, kwargs)
        with self._lock:
            self._futures.add(future)
        future.add_done_callback(self._discard)
        return future

    def _run(self, func, task_name, args, kwargs):
        with self.app.app_context():
            try:
                return self._call(func, task_name, args, kwargs)
            finally:
                db.session.remove()

    @staticmethod
    def _call(func, task_name, args, kwargs):
        try:
            return func(*args, **kwargs)
        except Exception:
            logger.exception(f"Background task {task_name} failed")
            db.session.rollback()

    def _discard(self, future: Future):
        with self._lock:
            self._futures.discard(future)

    @property
    def in_flight(self) -> int:
        with self._lock:
            return len(self._futures)

    def drain(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for in-flight tasks.

        Returns:
            True if everything finished within the timeout
        """
        with self._lock:
            pending = set(self._futures)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait_for_tasks: bool = True):
        """Stop accepting work; optionally wait for in-flight tasks."""
        if self._executor is not None:
            logger.info(f"Shutting down background tasks ({self.in_flight} in flight)")
            self._executor.shutdown(wait=wait_for_tasks)
            self._executor = None


# Global registry, bound to the app in create_app()
background_tasks = BackgroundTasks()
