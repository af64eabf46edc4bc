"""
Unit tests for the background task registry (volbackup/tasks.py).
"""

import threading

import pytest
from flask import current_app

from volbackup.tasks import BackgroundTasks


@pytest.fixture
def pooled_app(app):
    app.config['BACKGROUND_TASKS_EAGER'] = False
    return app


class TestBackgroundTasks:
    """Test spawning, draining and shutdown."""

    def test_spawn_requires_init(self):
        with pytest.raises(RuntimeError):
            BackgroundTasks().spawn(lambda: None)

    def test_eager_runs_inline(self, app):
        tasks = BackgroundTasks()
        tasks.init_app(app)
        calls = []

        assert tasks.spawn(calls.append, 1) is None
        assert calls == [1]

    def test_eager_outside_context_pushes_one(self, app):
        tasks = BackgroundTasks()
        tasks.init_app(app)
        seen = []

        tasks.spawn(lambda: seen.append(current_app.name))

        assert seen == [app.name]

    def test_pooled_task_runs_in_app_context(self, pooled_app):
        tasks = BackgroundTasks()
        tasks.init_app(pooled_app)
        seen = []

        future = tasks.spawn(lambda: seen.append(current_app.config['TESTING']))
        future.result(timeout=5)

        assert seen == [True]
        assert tasks.drain(timeout=5) is True
        assert tasks.in_flight == 0
        tasks.shutdown()

    def test_failure_is_logged_not_raised(self, pooled_app):
        tasks = BackgroundTasks()
        tasks.init_app(pooled_app)

        def boom():
            raise RuntimeError('boom')

        future = tasks.spawn(boom, name='boom')

        assert future.result(timeout=5) is None
        tasks.shutdown()

    def test_drain_waits_for_in_flight(self, pooled_app):
        tasks = BackgroundTasks()
        tasks.init_app(pooled_app)
        release = threading.Event()

        tasks.spawn(release.wait, 5)

        assert tasks.drain(timeout=0.05) is False
        release.set()
        assert tasks.drain(timeout=5) is True
        tasks.shutdown()

    def test_spawn_after_shutdown(self, pooled_app):
        tasks = BackgroundTasks()
        tasks.init_app(pooled_app)
        tasks.shutdown()

        with pytest.raises(RuntimeError):
            tasks.spawn(lambda: None)
