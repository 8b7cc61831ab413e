"""API Dependencies - Common dependencies for routes"""
from typing import Optional
from fastapi import Header

from ..domain.models import ActorContext
from ..domain.errors import MissingHeaderError
from ..engine.approval_state_machine import ApprovalStateMachine
from ..repositories.configuration_repo import ConfigurationRepository
from ..scheduler.job_scheduler import JobScheduler, get_scheduler
from ..services.configuration_service import ConfigurationService
from ..services.request_service import ConfigurationStageAdvancer, RequestService


async def get_actor_dep(
    x_tenant_id: Optional[str] = Header(None, alias="X-Tenant-Id"),
    x_user_id: Optional[str] = Header(None, alias="X-User-Id")
) -> ActorContext:
    """
    Caller identity from the tenant and user headers

    The headers are trusted as sent; authentication happens upstream.

    Raises:
        MissingHeaderError: 400 if either header is missing or blank
    """
    missing = [
        name for name, value in (("X-Tenant-Id", x_tenant_id), ("X-User-Id", x_user_id))
        if not (value or "").strip()
    ]
    if missing:
        raise MissingHeaderError(
            f"Missing required header(s): {', '.join(missing)}",
            details={"headers": missing}
        )
    return ActorContext(tenant_id=x_tenant_id.strip(), user_id=x_user_id.strip())


def get_configuration_service() -> ConfigurationService:
    return ConfigurationService()


def get_request_service() -> RequestService:
    return RequestService()


def get_state_machine() -> ApprovalStateMachine:
    """State machine that opens the next configured stage when one drains"""
    return ApprovalStateMachine(stage_advancer=ConfigurationStageAdvancer(ConfigurationRepository()))


def get_job_scheduler() -> JobScheduler:
    return get_scheduler()
