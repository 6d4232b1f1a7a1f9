"""
Scheduled job inspection and manual triggering.
"""
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, status

from musixbot.api.deps import get_bot
from musixbot.errors import BusyError, NotFoundError
from musixbot.models.schemas.base import ResponseBase
from musixbot.services.bot import MusixBot
from musixbot.utils import get_logger

router = APIRouter()
logger = get_logger(__name__)


@router.get(
    "/",
    response_model=List[Dict[str, Any]],
    summary="List scheduled jobs"
)
async def list_jobs(bot: MusixBot = Depends(get_bot)) -> List[Dict[str, Any]]:
    return bot.scheduler.get_all_jobs()


@router.get(
    "/{job_id}",
    response_model=Dict[str, Any],
    summary="Get job status"
)
async def get_job(job_id: str, bot: MusixBot = Depends(get_bot)) -> Dict[str, Any]:
    job = bot.scheduler.get_job_status(job_id)
    if job is None:
        raise NotFoundError(f"Job {job_id} not found")
    return job


@router.post(
    "/{job_id}/run",
    response_model=ResponseBase,
    summary="Run a job immediately"
)
async def run_job(job_id: str, bot: MusixBot = Depends(get_bot)) -> ResponseBase:
    """Run the job now. Unknown ids map to 404, a job already running to 409."""
    try:
        await bot.scheduler.run_job_now(job_id)
    except (NotFoundError, BusyError):
        raise
    except Exception as e:
        logger.error("Manual job run failed", job_id=job_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Job {job_id} failed: {e}"
        )
    return ResponseBase(success=True, message=f"Job {job_id} completed", data=bot.scheduler.get_job_status(job_id))
