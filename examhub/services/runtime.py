"""
Runtime for a student's exam attempt.

States: not started -> in progress (``started_at`` stamped on first open) ->
finished (``finished_at`` and ``score`` written once). Remaining time is always
derived from ``started_at`` and ``duration``; nothing counts down in storage.
State transitions are conditional UPDATEs so concurrent requests cannot stamp
or score an attempt twice. Answer writes and finalization both lock the
unfinished attempt row first, so no answer lands after the score is taken.
"""
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import func, select, update, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from examhub.core.auth import ASSIGNER_ROLES, TokenData
from examhub.core.clock import utcnow
from examhub.core.config import settings
from examhub.core.errors import Forbidden, Internal, NotFound, ValidationError
from examhub.models.orm import (
    Answer, ExamAttempt, ExamAttemptQuestion, MarkedQuestion, Question, StudentAnswer,
)
from examhub.models.schemas import (
    AnswerOut, AttemptResult, AttemptSummary, AttemptView, FinishResult,
    QuestionOut, ResultQuestion,
)
from examhub.services.scorer import ScoredQuestion, normalize, percentage, score, total_points

logger = logging.getLogger(__name__)


# ---------- timing ----------

def deadline_of(attempt: ExamAttempt) -> Optional[datetime]:
    """End of the attempt's time budget, or None while unstarted."""
    if attempt.started_at is None:
        return None
    return attempt.started_at + timedelta(minutes=attempt.duration)


def time_remaining(attempt: ExamAttempt, now: datetime) -> int:
    """Whole seconds left in the time budget, clamped at zero."""
    end = deadline_of(attempt)
    if end is None:
        return attempt.duration * 60
    return max(0, int((end - now).total_seconds()))


def budget_elapsed(attempt: ExamAttempt, now: datetime, grace_seconds: int = 0) -> bool:
    end = deadline_of(attempt)
    return end is not None and end + timedelta(seconds=grace_seconds) <= now


def status_of(attempt: ExamAttempt) -> str:
    if attempt.finished_at is not None:
        return "finished"
    if attempt.started_at is not None:
        return "in_progress"
    return "not_started"


# ---------- loading ----------

def _get_attempt(db: Session, attempt_id: int) -> ExamAttempt:
    attempt = db.get(ExamAttempt, attempt_id)
    if attempt is None:
        raise NotFound("Exam attempt not found")
    return attempt


def _require_owner(user: TokenData, attempt: ExamAttempt) -> None:
    if user.student_id is None or attempt.student_id != user.student_id:
        raise Forbidden("This attempt belongs to another student")


def _snapshot_questions(db: Session, attempt: ExamAttempt) -> List[Question]:
    return db.scalars(
        select(Question)
        .join(ExamAttemptQuestion, ExamAttemptQuestion.question_id == Question.id)
        .where(ExamAttemptQuestion.attempt_id == attempt.id)
        .order_by(ExamAttemptQuestion.position)
        .options(selectinload(Question.answers))
    ).all()


def _answer_map(db: Session, attempt_id: int) -> Dict[int, int]:
    rows = db.execute(
        select(StudentAnswer.question_id, StudentAnswer.answer_id).where(StudentAnswer.attempt_id == attempt_id)
    ).all()
    return {qid: aid for qid, aid in rows}


def _marked(db: Session, attempt_id: int) -> List[int]:
    return db.scalars(
        select(MarkedQuestion.question_id).where(MarkedQuestion.attempt_id == attempt_id).order_by(MarkedQuestion.question_id)
    ).all()


def question_out(q: Question, reveal: bool = False) -> QuestionOut:
    return QuestionOut(
        id=q.id,
        content=q.content,
        points=q.points,
        answers=[AnswerOut(id=a.id, content=a.content, is_correct=a.is_correct if reveal else None) for a in q.answers],
    )


# ---------- finalization ----------

def _lock_unfinished(db: Session, attempt_id: int) -> bool:
    """Row-lock the attempt for this transaction if it is still unfinished."""
    locked = db.scalar(
        select(ExamAttempt.id)
        .where(ExamAttempt.id == attempt_id, ExamAttempt.finished_at.is_(None))
        .with_for_update()
    )
    return locked is not None


def _finalize(db: Session, attempt: ExamAttempt, finished_at: datetime) -> FinishResult:
    """Score the snapshot and write finished_at/score only if still unfinished."""
    questions = [ScoredQuestion.from_question(q) for q in _snapshot_questions(db, attempt)]
    possible = total_points(questions)

    if attempt.finished_at is not None:
        logger.info(f"Duplicate finish for attempt {attempt.id} ignored")
    elif not _lock_unfinished(db, attempt.id):
        # another request finished it after this session loaded the row
        db.rollback()
        db.refresh(attempt)
        logger.info(f"Attempt {attempt.id} was finished concurrently; keeping stored score")
    else:
        earned = score(questions, _answer_map(db, attempt.id))
        result = db.execute(
            update(ExamAttempt)
            .where(ExamAttempt.id == attempt.id, ExamAttempt.finished_at.is_(None))
            .values(
                finished_at=finished_at,
                score=earned,
                started_at=func.coalesce(ExamAttempt.started_at, finished_at),
            )
            .execution_options(synchronize_session=False)
        )
        db.commit()
        db.refresh(attempt)
        if result.rowcount == 1:
            logger.info(f"Attempt {attempt.id} finished: score {earned}/{possible}")
            return _finish_result(attempt, possible, already_finished=False)
        logger.warning(f"Attempt {attempt.id} was finished concurrently; keeping stored score")
    return _finish_result(attempt, possible, already_finished=True)


def _finish_result(attempt: ExamAttempt, possible: float, already_finished: bool) -> FinishResult:
    return FinishResult(
        attempt_id=attempt.id,
        score=attempt.score,
        total_points=possible,
        percentage=percentage(attempt.score, possible),
        finished_at=attempt.finished_at,
        already_finished=already_finished,
    )


# ---------- operations ----------

def open_attempt(db: Session, user: TokenData, attempt_id: int, now: Optional[datetime] = None) -> AttemptView:
    """Return the taking view, stamping ``started_at`` on first access."""
    now = now or utcnow()
    attempt = _get_attempt(db, attempt_id)
    _require_owner(user, attempt)

    if attempt.finished_at is None and settings.AUTO_FINALIZE_ON_READ and budget_elapsed(attempt, now):
        _finalize(db, attempt, deadline_of(attempt))
    if attempt.finished_at is not None:
        raise Forbidden("This exam has already been completed")

    if attempt.started_at is None:
        result = db.execute(
            update(ExamAttempt)
            .where(ExamAttempt.id == attempt.id, ExamAttempt.started_at.is_(None))
            .values(started_at=now)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        db.refresh(attempt)
        if result.rowcount == 1:
            logger.info(f"Attempt {attempt.id} started by student {attempt.student_id}")

    return AttemptView(
        id=attempt.id,
        exam_id=attempt.exam_id,
        name=attempt.name,
        duration=attempt.duration,
        started_at=attempt.started_at,
        expirate_at=attempt.expirate_at,
        time_remaining_seconds=time_remaining(attempt, now),
        show_correct_after=attempt.show_correct_after,
        questions=[question_out(q) for q in _snapshot_questions(db, attempt)],
        saved_answers=_answer_map(db, attempt.id),
        marked_questions=_marked(db, attempt.id),
    )


def save_answer(
    db: Session,
    user: TokenData,
    attempt_id: int,
    question_id: int,
    answer_id: int,
    now: Optional[datetime] = None,
) -> None:
    """Upsert the selected answer for one question; last write wins."""
    now = now or utcnow()
    attempt = _get_attempt(db, attempt_id)
    _require_owner(user, attempt)
    if attempt.finished_at is not None:
        raise Forbidden("Cannot answer questions on a completed exam")
    if attempt.started_at is None:
        raise Forbidden("This exam has not been started")
    if budget_elapsed(attempt, now, settings.ANSWER_GRACE_SECONDS):
        raise Forbidden("Time is up for this exam")

    if db.get(ExamAttemptQuestion, (attempt.id, question_id)) is None:
        raise NotFound("Question not found in this attempt")
    answer = db.scalar(select(Answer).where(Answer.id == answer_id, Answer.question_id == question_id))
    if answer is None:
        raise NotFound("Answer not found for this question")

    # the finish check above may be stale; recheck under the row lock
    if not _lock_unfinished(db, attempt.id):
        db.rollback()
        raise Forbidden("Cannot answer questions on a completed exam")
    existing = db.scalar(
        select(StudentAnswer).where(StudentAnswer.attempt_id == attempt.id, StudentAnswer.question_id == question_id)
    )
    if existing is not None:
        existing.answer_id = answer_id
        existing.updated_at = now
    else:
        db.add(StudentAnswer(attempt_id=attempt.id, question_id=question_id, answer_id=answer_id, updated_at=now))
    try:
        db.commit()
    except IntegrityError:
        # a concurrent insert for the same question landed first
        db.rollback()
        if not _lock_unfinished(db, attempt.id):
            db.rollback()
            raise Forbidden("Cannot answer questions on a completed exam")
        result = db.execute(
            update(StudentAnswer)
            .where(StudentAnswer.attempt_id == attempt.id, StudentAnswer.question_id == question_id)
            .values(answer_id=answer_id, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            raise Internal("Could not save answer")
        db.commit()


def mark_questions(db: Session, user: TokenData, attempt_id: int, question_ids: List[int]) -> List[int]:
    """Replace the set of questions flagged for review."""
    attempt = _get_attempt(db, attempt_id)
    _require_owner(user, attempt)
    if attempt.finished_at is not None:
        raise Forbidden("Cannot mark questions on a completed exam")

    snapshot = set(db.scalars(
        select(ExamAttemptQuestion.question_id).where(ExamAttemptQuestion.attempt_id == attempt.id)
    ).all())
    wanted = list(dict.fromkeys(question_ids))
    unknown = [qid for qid in wanted if qid not in snapshot]
    if unknown:
        raise ValidationError(f"Questions not in this attempt: {unknown}")

    db.execute(delete(MarkedQuestion).where(MarkedQuestion.attempt_id == attempt.id))
    db.add_all([MarkedQuestion(attempt_id=attempt.id, question_id=qid) for qid in wanted])
    db.commit()
    return sorted(wanted)


def finish_attempt(db: Session, user: TokenData, attempt_id: int, now: Optional[datetime] = None) -> FinishResult:
    """Submit the attempt. Finishing twice returns the stored score unchanged."""
    attempt = _get_attempt(db, attempt_id)
    _require_owner(user, attempt)
    return _finalize(db, attempt, now or utcnow())


def get_result(db: Session, user: TokenData, attempt_id: int) -> AttemptResult:
    attempt = _get_attempt(db, attempt_id)
    is_staff = user.has_role(*ASSIGNER_ROLES)
    if not is_staff:
        _require_owner(user, attempt)
    if attempt.finished_at is None:
        raise Forbidden("You cannot view results until you complete the exam")

    reveal = attempt.show_correct_after or is_staff
    answer_map = _answer_map(db, attempt.id)
    questions = _snapshot_questions(db, attempt)
    scored = {q.id: ScoredQuestion.from_question(q) for q in questions}
    possible = total_points(scored.values())

    out = []
    for q in questions:
        selected = answer_map.get(q.id)
        base = question_out(q, reveal=reveal)
        out.append(ResultQuestion(
            **base.model_dump(),
            selected_answer_id=selected,
            is_correct=(selected in scored[q.id].correct_answer_ids) if reveal else None,
        ))

    return AttemptResult(
        id=attempt.id,
        exam_id=attempt.exam_id,
        name=attempt.name,
        started_at=attempt.started_at,
        finished_at=attempt.finished_at,
        score=attempt.score,
        total_points=possible,
        score_out_of_ten=normalize(attempt.score, possible),
        show_correct_after=attempt.show_correct_after,
        questions=out,
    )


def list_student_attempts(db: Session, user: TokenData) -> List[AttemptSummary]:
    if user.student_id is None:
        raise Forbidden("Student profile required")
    attempts = db.scalars(
        select(ExamAttempt)
        .where(ExamAttempt.student_id == user.student_id)
        .order_by(ExamAttempt.created_at.desc(), ExamAttempt.id.desc())
    ).all()
    return [
        AttemptSummary(
            id=a.id,
            exam_id=a.exam_id,
            name=a.name,
            status=status_of(a),
            duration=a.duration,
            expirate_at=a.expirate_at,
            started_at=a.started_at,
            finished_at=a.finished_at,
            score=a.score,
        )
        for a in attempts
    ]


def finalize_expired_attempts(db: Session, now: Optional[datetime] = None, limit: Optional[int] = None) -> int:
    """
    Finish every in-progress attempt whose time budget has run out.

    Finished-at is stamped at the end of the budget rather than at sweep time.
    Returns the number of attempts this call finalized.
    """
    now = now or utcnow()
    candidates = db.scalars(
        select(ExamAttempt)
        .where(ExamAttempt.finished_at.is_(None), ExamAttempt.started_at.is_not(None))
        .order_by(ExamAttempt.started_at)
    ).all()
    finalized = 0
    for attempt in candidates:
        if limit is not None and finalized >= limit:
            break
        if not budget_elapsed(attempt, now):
            continue
        if not _finalize(db, attempt, deadline_of(attempt)).already_finished:
            finalized += 1
    if finalized:
        logger.info(f"Expiry sweep finalized {finalized} attempt(s)")
    return finalized
