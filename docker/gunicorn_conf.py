# Gunicorn configuration for volbackup
# Run with: gunicorn -c docker/gunicorn_conf.py "volbackup:create_app()"
# Only one worker may own the scheduler, the storage watch and the sweeps

import os
import logging

logger = logging.getLogger('gunicorn.error')

bind = os.environ.get('GUNICORN_BIND', '0.0.0.0:5000')
workers = int(os.environ.get('GUNICORN_WORKERS', '2'))
threads = int(os.environ.get('GUNICORN_THREADS', '4'))
timeout = 120
preload_app = False


def post_fork(server, worker):
    """
    Designate the timer-owning worker before the worker imports the app.

    The arbiter numbers workers from age 1; only the first one owns the timers.
    A replacement worker never takes over the role.
    """
    owner = worker.age == 1
    os.environ['SCHEDULER_WORKER'] = 'true' if owner else 'false'
    if owner:
        logger.info(f"Worker PID {worker.pid} (age={worker.age}): Designated as SCHEDULER OWNER")
    else:
        logger.info(f"Worker PID {worker.pid} (age={worker.age}): Standard HTTP worker (scheduler disabled)")
