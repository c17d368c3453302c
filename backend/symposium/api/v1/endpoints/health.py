from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
import logging
import time

from ....core.config import settings
from ....core.database import get_async_db
from ....core.locks import attempt_locks
from ....services.notifier import InMemoryBroker, get_notifier

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/")
async def get_health(db: AsyncSession = Depends(get_async_db)):
    """Basic health status - no authentication required"""
    health_status = {
        "status": "healthy",
        "timestamp": time.time(),
        "service": "symposium-proctor",
        "services": {},
    }

    try:
        start_time = time.time()
        await db.execute(text("SELECT 1"))
        health_status["services"]["database"] = {
            "status": "healthy",
            "response_time": round((time.time() - start_time) * 1000, 2),
        }
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        health_status["services"]["database"] = {"status": "error", "error": str(e)}
        health_status["status"] = "unhealthy"

    broker = get_notifier().broker
    health_status["services"]["notifier"] = {
        "backend": "memory" if isinstance(broker, InMemoryBroker) else settings.notifier_backend,
    }
    health_status["active_attempt_locks"] = len(attempt_locks)
    return health_status
