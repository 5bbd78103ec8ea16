from rq import Worker
from examhub.core.config import settings
from examhub.core.logging import configure_logging
from examhub.jobs.queue import queue, redis
from examhub.jobs.expiry_job import SWEEP_JOB_ID, sweep_expired_attempts_job
if __name__ == "__main__":
    configure_logging()
    if settings.EXPIRY_SWEEP_INTERVAL_SECONDS > 0:
        # fixed id: a restart replaces the running chain instead of adding one
        queue.enqueue(sweep_expired_attempts_job, recurring=True, job_id=SWEEP_JOB_ID)
    w = Worker([settings.RQ_QUEUE], connection=redis)
    w.work(with_scheduler=True)
