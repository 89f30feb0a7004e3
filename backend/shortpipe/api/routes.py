"""API route handlers and Pydantic request/response schemas."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import BaseModel

from shortpipe.errors import InvalidPromptError, JobAccessDenied, JobNotFound
from shortpipe.orchestrator.status import JobStatusView
from shortpipe.workers.tasks import submit_job

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


# ============================================================================
# Pydantic Schemas
# ============================================================================

class CreateVideoRequest(BaseModel):
    """Request schema for POST /api/videos."""
    prompt: str


class CreateVideoResponse(BaseModel):
    """Response schema for POST /api/videos."""
    job_id: str
    status: str
    status_url: str


class JobListItem(BaseModel):
    job_id: str
    prompt: str
    status: str
    video_url: Optional[str] = None
    created_at: str


# ============================================================================
# Dependencies
# ============================================================================

def get_owner_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    """Caller identity from the X-User-Id header set by the auth proxy."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Unauthorized")
    return x_user_id.strip()


# ============================================================================
# Endpoints
# ============================================================================

@router.post("/videos", status_code=202, response_model=CreateVideoResponse)
async def create_video(
    body: CreateVideoRequest,
    request: Request,
    owner_id: str = Depends(get_owner_id),
):
    """Create a job for ``prompt`` and queue its first attempt."""
    state = request.app.state
    try:
        job_id = await submit_job(state.jobs, body.prompt, owner_id, enqueue=state.enqueue)
    except InvalidPromptError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return CreateVideoResponse(
        job_id=job_id,
        status="processing",
        status_url=f"/api/videos/{job_id}/progress",
    )


@router.get("/videos/{job_id}/progress")
async def get_video_progress(
    job_id: str,
    request: Request,
    owner_id: str = Depends(get_owner_id),
):
    """Live status for polling clients, falling back to the job row."""
    try:
        view: JobStatusView = await request.app.state.status_reader.get_status(job_id, owner_id)
    except JobAccessDenied:
        raise HTTPException(status_code=403, detail="Forbidden")
    except JobNotFound:
        raise HTTPException(status_code=404, detail="Video not found")
    return view.model_dump(by_alias=True, exclude_none=True)


@router.get("/videos", response_model=list[JobListItem])
async def list_videos(request: Request, owner_id: str = Depends(get_owner_id)):
    jobs = await request.app.state.jobs.list_jobs(owner_id)
    return [
        JobListItem(
            job_id=job.id,
            prompt=job.prompt,
            status=job.status,
            video_url=job.video_url,
            created_at=job.created_at.isoformat(),
        )
        for job in jobs
    ]
