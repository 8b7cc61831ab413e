"""API Routes module"""
from fastapi import APIRouter

from .configurations import router as configurations_router
from .requests import router as requests_router
from .approvals import router as approvals_router
from .jobs import router as jobs_router

# Main API router
api_router = APIRouter()

api_router.include_router(configurations_router, prefix="/configurations", tags=["Configurations"])
api_router.include_router(requests_router, prefix="/requests", tags=["Requests"])
api_router.include_router(approvals_router, prefix="/approvals", tags=["Approvals"])
api_router.include_router(jobs_router, prefix="/jobs", tags=["Jobs"])

__all__ = ["api_router"]
