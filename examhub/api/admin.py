from fastapi import APIRouter, Depends
from pydantic import BaseModel
from typing import Optional
from rq.exceptions import NoSuchJobError
from rq.job import Job
from examhub.core.auth import require_roles, ROLE_ADMIN
from examhub.core.errors import NotFound
from examhub.jobs.queue import queue, redis
from examhub.jobs.expiry_job import sweep_expired_attempts_job

router = APIRouter()

class SweepStart(BaseModel):
    batch_size: Optional[int] = None

class SweepStatus(BaseModel):
    state: str
    finalized: int = 0
    result: dict | None = None

@router.post("/attempts/sweep", status_code=202, dependencies=[Depends(require_roles(ROLE_ADMIN))])
def start_sweep(payload: SweepStart):
    job = queue.enqueue(sweep_expired_attempts_job, payload.batch_size, recurring=False, job_timeout=600)
    return {"job_id": job.get_id()}

@router.get("/attempts/sweep/status", response_model=SweepStatus, dependencies=[Depends(require_roles(ROLE_ADMIN))])
def sweep_status(job_id: str):
    try:
        job = Job.fetch(job_id, connection=redis)
    except NoSuchJobError:
        raise NotFound("Job not found")
    meta = job.meta or {}
    state = meta.get("state") or job.get_status()
    return SweepStatus(
        state=getattr(state, "value", state),
        finalized=int(meta.get("finalized") or 0),
        result=job.result if state == "done" else None,
    )
