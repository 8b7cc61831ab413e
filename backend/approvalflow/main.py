"""
Approval Workflow Engine - HTTP application

`app` serves the /api/v1 routers plus /health. Its lifespan owns the two
process-wide resources: the Mongo indexes and the in-process job scheduler.
"""

from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pymongo.errors import PyMongoError

from . import __version__
from .config.settings import settings
from .api.routes import api_router
from .api.middleware import CorrelationIdMiddleware, register_error_handlers
from .api.middleware.correlation import CORRELATION_HEADER
from .repositories.mongo_client import create_indexes, close_connection, health_check
from .scheduler.job_scheduler import get_scheduler, start_scheduler, stop_scheduler
from .utils.logger import setup_logging, get_logger

setup_logging()
logger = get_logger(__name__)

health_router = APIRouter(tags=["Health"])


@health_router.get("/health")
async def health() -> Dict[str, Any]:
    """Database connectivity and whether the sweeps are scheduled"""
    mongo = health_check()
    return {
        "status": "healthy" if mongo.get("status") == "healthy" else "degraded",
        "version": __version__,
        "environment": settings.environment,
        "mongo": mongo,
        "scheduler": {
            "enabled": settings.scheduler_enabled,
            "running": settings.scheduler_enabled and get_scheduler().is_running
        }
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        create_indexes()
    except PyMongoError as e:
        logger.error(f"Index creation failed: {e}", extra={"error_type": type(e).__name__})

    if settings.scheduler_enabled:
        start_scheduler()
    logger.info(f"Approval engine {__version__} up", extra={"status": settings.environment})

    try:
        yield
    finally:
        stop_scheduler()
        close_connection()
        logger.info("Approval engine stopped")


def create_app() -> FastAPI:
    """Build the application: CORS, correlation ids, error envelope, routers"""
    docs = settings.debug
    application = FastAPI(
        title="Approval Workflow Engine",
        description="Multi-tenant approval workflow orchestration: rule evaluation, staged approvals and escalation",
        version=__version__,
        lifespan=lifespan,
        docs_url="/api/docs" if docs else None,
        redoc_url="/api/redoc" if docs else None,
        openapi_url="/api/openapi.json" if docs else None,
    )

    # Browsers refuse credentials with a wildcard origin
    wildcard = settings.cors_origins.strip() == "*"
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if wildcard else settings.cors_origins_list,
        allow_credentials=not wildcard,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[CORRELATION_HEADER],
    )
    application.add_middleware(CorrelationIdMiddleware)
    register_error_handlers(application)

    application.include_router(api_router, prefix="/api/v1")
    application.include_router(health_router)
    return application


app = create_app()
