import asyncio
from celery import Task


class AsyncTask(Task):
    """
    Celery task whose ``run`` is a coroutine.

    Runs on the worker process's persistent loop so async database
    connections stay bound to a single loop. Outside a prefork worker
    (eager mode, ``celery call`` in a shell) a throwaway loop is used.
    """

    def __call__(self, *args, **kwargs):
        from .celery_app import get_worker_loop

        loop = get_worker_loop()
        if loop is None:
            return asyncio.run(self.run(*args, **kwargs))
        return loop.run_until_complete(self.run(*args, **kwargs))
