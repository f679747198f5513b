from fastapi import APIRouter

from .campaigns import router as campaigns_router
from .health import router as health_router
from .submissions import router as submissions_router


api_router = APIRouter()

api_router.include_router(health_router, tags=["health"])
api_router.include_router(submissions_router)
api_router.include_router(campaigns_router)
