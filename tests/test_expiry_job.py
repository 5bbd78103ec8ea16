from datetime import timedelta

from conftest import add_class, add_exam, add_question
from examhub.core.clock import utcnow
from examhub.core.config import settings
from examhub.jobs import expiry_job
from examhub.models.orm import DifficultyLevel, ExamAttempt
from examhub.models.schemas import AssignmentConfig, ClassTarget
from examhub.services.assignment import create_attempts


class FakeJob:
    def __init__(self):
        self.meta = {}
        self.saved = []

    def save_meta(self):
        self.saved.append(dict(self.meta))


def started_attempt(db, teacher, minutes_ago):
    exam = add_exam(db, [add_question(db, "q", DifficultyLevel.EASY, 1)])
    cls = add_class(db, 1)
    summary = create_attempts(
        db, teacher, exam.id, ClassTarget(class_id=cls.id),
        AssignmentConfig(name="Timed", expirate_at=utcnow() + timedelta(days=1), duration=10),
    )
    attempt = db.get(ExamAttempt, summary.attempt_ids[0])
    attempt.started_at = utcnow() - timedelta(minutes=minutes_ago)
    db.commit()
    return attempt


def test_sweep_outside_a_worker(db, teacher, monkeypatch):
    attempt = started_attempt(db, teacher, minutes_ago=15)
    monkeypatch.setattr(expiry_job, "get_current_job", lambda: None)

    assert expiry_job.sweep_expired_attempts_job() == {"finalized": 1}
    db.refresh(attempt)
    assert attempt.finished_at == attempt.started_at + timedelta(minutes=10)
    assert attempt.score == 0


def test_sweep_records_progress_in_job_meta(db, teacher, monkeypatch):
    started_attempt(db, teacher, minutes_ago=3)
    job = FakeJob()
    monkeypatch.setattr(expiry_job, "get_current_job", lambda: job)
    monkeypatch.setattr(settings, "EXPIRY_SWEEP_INTERVAL_SECONDS", 0)

    assert expiry_job.sweep_expired_attempts_job(batch_size=5) == {"finalized": 0}
    assert [m["state"] for m in job.saved] == ["running", "done"]
    assert job.meta["finalized"] == 0


class FakeQueue:
    def __init__(self):
        self.scheduled = []
        self.enqueued = []

    def enqueue_in(self, delay, func, *args, **kwargs):
        self.scheduled.append((delay, func, kwargs))

    def enqueue(self, func, *args, **kwargs):
        self.enqueued.append((func, args, kwargs))
        return FakeEnqueued()


class FakeEnqueued:
    def get_id(self):
        return "job-1"


def test_scheduled_sweep_reschedules_under_the_fixed_id(db, monkeypatch):
    from examhub.jobs import queue as queue_module

    fake = FakeQueue()
    monkeypatch.setattr(expiry_job, "get_current_job", lambda: FakeJob())
    monkeypatch.setattr(settings, "EXPIRY_SWEEP_INTERVAL_SECONDS", 60)
    monkeypatch.setattr(queue_module, "queue", fake)

    expiry_job.sweep_expired_attempts_job(recurring=True)
    assert fake.scheduled == [(
        timedelta(seconds=60),
        expiry_job.sweep_expired_attempts_job,
        {"recurring": True, "job_id": expiry_job.SWEEP_JOB_ID},
    )]


def test_manual_sweep_runs_once(db, monkeypatch):
    from examhub.jobs import queue as queue_module

    fake = FakeQueue()
    monkeypatch.setattr(expiry_job, "get_current_job", lambda: FakeJob())
    monkeypatch.setattr(settings, "EXPIRY_SWEEP_INTERVAL_SECONDS", 60)
    monkeypatch.setattr(queue_module, "queue", fake)

    assert expiry_job.sweep_expired_attempts_job(batch_size=10) == {"finalized": 0}
    assert fake.scheduled == []


def test_admin_sweep_endpoint_enqueues_a_one_off_job(client, monkeypatch):
    from conftest import auth_header
    from examhub.api import admin

    fake = FakeQueue()
    monkeypatch.setattr(admin, "queue", fake)
    r = client.post("/v1/admin/attempts/sweep", headers=auth_header("root", ["admin"]), json={"batch_size": 25})
    assert r.status_code == 202
    assert r.json() == {"job_id": "job-1"}
    [(func, args, kwargs)] = fake.enqueued
    assert func is expiry_job.sweep_expired_attempts_job
    assert args == (25,)
    assert kwargs["recurring"] is False
