from ..core.async_task import AsyncTask
from ..core.celery_app import celery_app
from ..core.database import AsyncSessionLocal
from ..services.attempt_service import AttemptService
import logging

logger = logging.getLogger(__name__)


async def run_deadline_sweep(session_factory=AsyncSessionLocal):
    """Finalize every attempt whose deadline has passed; returns the finalized ids"""
    async with session_factory() as db:
        return await AttemptService(db).sweep_expired()


@celery_app.task(
    name="symposium.tasks.maintenance.sweep_expired_attempts",
    base=AsyncTask,
    bind=True,
    max_retries=3,
)
async def sweep_expired_attempts(self):
    """Periodic deadline sweep (beat schedule)"""
    try:
        finalized = await run_deadline_sweep()
    except Exception as exc:
        logger.error(f"Error in sweep_expired_attempts: {exc}", exc_info=True)
        raise self.retry(exc=exc, countdown=10)

    return {
        'finalized': finalized,
        'finalized_count': len(finalized),
    }
