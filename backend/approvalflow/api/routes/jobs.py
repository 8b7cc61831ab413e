"""Job API Routes - scheduler status and manual runs"""
from typing import List
from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..deps import get_actor_dep, get_job_scheduler
from ...domain.models import ActorContext
from ...scheduler.job_scheduler import JobScheduler, JobStatus
from ...utils.logger import get_logger

logger = get_logger(__name__)
router = APIRouter()


class RunJobResponse(BaseModel):
    job_id: str
    started: bool


@router.get("", response_model=List[JobStatus])
async def get_job_statuses(
    actor: ActorContext = Depends(get_actor_dep),
    scheduler: JobScheduler = Depends(get_job_scheduler)
):
    return scheduler.get_job_statuses()


@router.post("/{job_id}/run", response_model=RunJobResponse)
async def run_job(
    job_id: str,
    actor: ActorContext = Depends(get_actor_dep),
    scheduler: JobScheduler = Depends(get_job_scheduler)
):
    """Run a job now; started is False when a run is already in progress"""
    logger.info(f"Manual run of {job_id}", extra={"job_id": job_id, "tenant_id": actor.tenant_id})
    started = await scheduler.run_job_now(job_id)
    return RunJobResponse(job_id=job_id, started=started)
