import logging
from datetime import timedelta
from rq import get_current_job
from examhub.core.clock import utcnow
from examhub.core.config import settings
from examhub.core.database import SessionLocal
from examhub.services.runtime import finalize_expired_attempts

logger = logging.getLogger(__name__)

# one scheduled sweep chain per deployment; re-enqueueing under this id replaces it
SWEEP_JOB_ID = "examhub:expiry-sweep"

def sweep_expired_attempts_job(batch_size=None, recurring=False):
    """Finalize in-progress attempts whose time budget ran out.

    Only the scheduled chain (``recurring=True``) enqueues its next run;
    manual sweeps run once.
    """
    job = get_current_job()
    if job is not None:
        job.meta.update({"state": "running", "finalized": 0}); job.save_meta()
    db = SessionLocal()
    try:
        finalized = finalize_expired_attempts(db, utcnow(), limit=batch_size or settings.EXPIRY_SWEEP_BATCH_SIZE)
    except Exception:
        logger.exception("Expiry sweep failed")
        if job is not None:
            job.meta.update({"state": "failed"}); job.save_meta()
        raise
    finally:
        db.close()
    if job is not None:
        job.meta.update({"state": "done", "finalized": finalized}); job.save_meta()
    if recurring:
        _reschedule()
    return {"finalized": finalized}

def _reschedule():
    interval = settings.EXPIRY_SWEEP_INTERVAL_SECONDS
    if interval <= 0:
        return
    from examhub.jobs.queue import queue
    queue.enqueue_in(timedelta(seconds=interval), sweep_expired_attempts_job, recurring=True, job_id=SWEEP_JOB_ID)
