from celery import Celery
from celery.signals import worker_process_init, worker_process_shutdown
from .config import settings
import logging
import asyncio

logging.getLogger('celery.backends.redis').setLevel(logging.ERROR)

# One event loop per worker process, reused by every async task so the
# SQLAlchemy async pool is never shared across loops
_WORKER_LOOP = None


@worker_process_init.connect
def init_async_loop(**kwargs):
    global _WORKER_LOOP
    _WORKER_LOOP = asyncio.new_event_loop()
    asyncio.set_event_loop(_WORKER_LOOP)
    logging.info(f"Initialized asyncio event loop for worker process {kwargs.get('sender', 'unknown')}")


@worker_process_shutdown.connect
def shutdown_async_loop(**kwargs):
    global _WORKER_LOOP
    if _WORKER_LOOP:
        _WORKER_LOOP.close()
        asyncio.set_event_loop(None)
        _WORKER_LOOP = None
        logging.info("Closed asyncio event loop for worker process")


def get_worker_loop():
    """The persistent event loop for this worker process, if one was set up"""
    return _WORKER_LOOP


celery_app = Celery(
    "symposium_proctor_worker",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        'symposium.tasks.maintenance',
    ]
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,

    task_routes={
        'symposium.tasks.maintenance.*': {'queue': 'maintenance'},
    },

    worker_prefetch_multiplier=1,
    task_acks_late=True,
    worker_max_tasks_per_child=1000,

    # A sweep is a handful of short transactions; anything longer is stuck
    task_soft_time_limit=60,
    task_time_limit=120,

    result_expires=3600,
    broker_connection_retry_on_startup=True,

    task_default_retry_delay=10,
    task_max_retries=3,

    beat_schedule={
        'sweep-expired-attempts': {
            'task': 'symposium.tasks.maintenance.sweep_expired_attempts',
            'schedule': settings.deadline_sweep_interval_seconds,
        },
    },
)
