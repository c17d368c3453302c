from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
import asyncio
import logging

from .core.config import settings
from .core.database import AsyncSessionLocal, create_db_and_tables
from .core.exceptions import ProctorError
from .api.v1.api import api_router
from .middleware.performance import PerformanceMiddleware
from .middleware.timezone import ServerTimeMiddleware
from .services.attempt_service import AttemptService
from .services.notifier import get_notifier

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Symposium Proctoring API",
    description="Timed, proctored test attempts with live scoring and leaderboards",
    version="1.0.0",
    docs_url="/docs" if settings.environment == "development" else None,
    redoc_url="/redoc" if settings.environment == "development" else None
)

app.add_middleware(GZipMiddleware, minimum_size=1000)

app.add_middleware(ServerTimeMiddleware)

app.add_middleware(
    PerformanceMiddleware,
    slow_request_threshold=settings.slow_request_threshold
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ProctorError)
async def proctor_error_handler(request: Request, exc: ProctorError):
    if exc.http_status >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"Database error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=503,
        content={
            "error": "database_unavailable",
            "message": "The request could not be completed. Please retry.",
            "retryable": True,
            "request_id": getattr(request.state, 'request_id', 'unknown')
        }
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Global exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "message": "An unexpected error occurred. Please try again later.",
            "request_id": getattr(request.state, 'request_id', 'unknown')
        }
    )


async def deadline_sweeper(interval: float):
    """Finalize expired attempts even when no client touches them"""
    while True:
        await asyncio.sleep(interval)
        try:
            async with AsyncSessionLocal() as db:
                await AttemptService(db).sweep_expired()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Deadline sweep failed: {e}", exc_info=True)


@app.on_event("startup")
async def startup_event():
    logger.info("Starting Symposium Proctoring API...")

    await create_db_and_tables()
    logger.info("Database initialized")

    get_notifier()
    logger.info(f"Realtime notifier using the {settings.notifier_backend} backend")

    if settings.run_inprocess_sweeper:
        app.state.sweeper = asyncio.create_task(deadline_sweeper(settings.deadline_sweep_interval_seconds))
        logger.info(f"Deadline sweeper running every {settings.deadline_sweep_interval_seconds}s")

    logger.info("Symposium Proctoring API startup completed")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Shutting down Symposium Proctoring API...")

    sweeper = getattr(app.state, "sweeper", None)
    if sweeper is not None:
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            pass

    await get_notifier().broker.close()
    logger.info("Symposium Proctoring API shutdown completed")


app.include_router(api_router, prefix="/api/v1")


@app.get("/")
async def read_root():
    return {
        "message": "Symposium Proctoring API",
        "version": "1.0.0",
    }
