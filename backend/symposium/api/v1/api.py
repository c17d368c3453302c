from fastapi import APIRouter

from .endpoints import attempts, proctoring, leaderboard, admin, rounds, realtime, health

api_router = APIRouter()

api_router.include_router(attempts.router, prefix="/attempts", tags=["attempts"])
api_router.include_router(proctoring.router, prefix="/proctoring", tags=["proctoring"])
api_router.include_router(leaderboard.router, prefix="/leaderboard", tags=["leaderboard"])
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])
api_router.include_router(rounds.router, prefix="/rounds", tags=["rounds"])
api_router.include_router(realtime.router, prefix="/realtime", tags=["realtime"])
api_router.include_router(health.router, prefix="/health", tags=["health"])
