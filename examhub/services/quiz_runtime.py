"""
Untimed multi-select lesson quizzes.

A quiz attempt snapshots one selection row per (question, answer) when it is
created; students toggle rows and finishing scores by exact-set match.
"""
import logging
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional, Set

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, selectinload

from examhub.core.auth import TokenData
from examhub.core.clock import utcnow
from examhub.core.errors import Forbidden, NotFound
from examhub.models.orm import Question, Quiz, QuizAttempt, QuizQuestion, QuizSelection
from examhub.models.schemas import QuizAttemptOut, QuizFinishResult, QuizSelectionOut
from examhub.services.runtime import question_out
from examhub.services.scorer import ScoredQuestion, percentage, score_selections, total_points

logger = logging.getLogger(__name__)


def _require_student(user: TokenData) -> int:
    if user.student_id is None:
        raise Forbidden("Student profile required")
    return user.student_id


def _attempt_questions(db: Session, attempt: QuizAttempt) -> List[Question]:
    """Questions as snapshotted in the attempt's selection rows, in creation order."""
    first = (
        select(QuizSelection.question_id, func.min(QuizSelection.id).label("first_id"))
        .where(QuizSelection.attempt_id == attempt.id)
        .group_by(QuizSelection.question_id)
        .subquery()
    )
    return db.scalars(
        select(Question)
        .join(first, first.c.question_id == Question.id)
        .order_by(first.c.first_id)
        .options(selectinload(Question.answers))
    ).all()


def _to_out(db: Session, attempt: QuizAttempt) -> QuizAttemptOut:
    return QuizAttemptOut(
        id=attempt.id,
        quiz_id=attempt.quiz_id,
        started_at=attempt.started_at,
        finished_at=attempt.finished_at,
        score=attempt.score,
        questions=[question_out(q) for q in _attempt_questions(db, attempt)],
        selections=[
            QuizSelectionOut(question_id=s.question_id, answer_id=s.answer_id, is_selected=s.is_selected)
            for s in attempt.selections
        ],
    )


def _get_owned_attempt(db: Session, user: TokenData, attempt_id: int) -> QuizAttempt:
    student_id = _require_student(user)
    attempt = db.get(QuizAttempt, attempt_id)
    if attempt is None:
        raise NotFound("Attempt not found")
    if attempt.student_id != student_id:
        raise Forbidden("This attempt belongs to another student")
    return attempt


def start_quiz(db: Session, user: TokenData, quiz_id: int) -> QuizAttemptOut:
    """Resume the caller's unfinished attempt, or create a fresh one."""
    student_id = _require_student(user)
    quiz = db.get(Quiz, quiz_id)
    if quiz is None:
        raise NotFound("Quiz not found")

    existing = db.scalar(
        select(QuizAttempt)
        .where(QuizAttempt.quiz_id == quiz_id, QuizAttempt.student_id == student_id, QuizAttempt.finished_at.is_(None))
        .order_by(QuizAttempt.id.desc())
    )
    if existing is not None:
        return _to_out(db, existing)

    questions = db.scalars(
        select(Question)
        .join(QuizQuestion, QuizQuestion.question_id == Question.id)
        .where(QuizQuestion.quiz_id == quiz_id)
        .order_by(QuizQuestion.position)
        .options(selectinload(Question.answers))
    ).all()
    attempt = QuizAttempt(
        quiz_id=quiz_id,
        student_id=student_id,
        started_at=utcnow(),
        selections=[
            QuizSelection(question_id=q.id, answer_id=a.id, is_selected=False)
            for q in questions for a in q.answers
        ],
    )
    db.add(attempt)
    db.commit()
    logger.info(f"Quiz {quiz_id} attempt {attempt.id} started by student {student_id}")
    return _to_out(db, attempt)


def set_selection(
    db: Session,
    user: TokenData,
    attempt_id: int,
    question_id: int,
    answer_id: int,
    is_selected: bool = True,
) -> QuizSelectionOut:
    attempt = _get_owned_attempt(db, user, attempt_id)
    if attempt.finished_at is not None:
        raise Forbidden("Attempt already finished")
    selection = db.scalar(
        select(QuizSelection).where(
            QuizSelection.attempt_id == attempt.id,
            QuizSelection.question_id == question_id,
            QuizSelection.answer_id == answer_id,
        )
    )
    if selection is None:
        raise NotFound("Question or answer not found in this attempt")
    selection.is_selected = is_selected
    db.commit()
    return QuizSelectionOut(question_id=question_id, answer_id=answer_id, is_selected=is_selected)


def finish_quiz(db: Session, user: TokenData, attempt_id: int, now: Optional[datetime] = None) -> QuizFinishResult:
    attempt = _get_owned_attempt(db, user, attempt_id)
    questions = [ScoredQuestion.from_question(q) for q in _attempt_questions(db, attempt)]
    possible = total_points(questions)

    already = True
    if attempt.finished_at is None:
        selected: Dict[int, Set[int]] = defaultdict(set)
        for s in attempt.selections:
            if s.is_selected:
                selected[s.question_id].add(s.answer_id)
        earned = score_selections(questions, selected)
        result = db.execute(
            update(QuizAttempt)
            .where(QuizAttempt.id == attempt.id, QuizAttempt.finished_at.is_(None))
            .values(finished_at=now or utcnow(), score=earned)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        db.refresh(attempt)
        already = result.rowcount == 0
        if not already:
            logger.info(f"Quiz attempt {attempt.id} finished: score {earned}/{possible}")
    if already:
        logger.info(f"Duplicate finish for quiz attempt {attempt.id} ignored")

    return QuizFinishResult(
        attempt_id=attempt.id,
        score=attempt.score,
        total_points=possible,
        percent_score=percentage(attempt.score, possible),
        finished_at=attempt.finished_at,
        already_finished=already,
    )
