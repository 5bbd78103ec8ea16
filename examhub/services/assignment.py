"""
Exam assignment: fan an exam out to students as individual timed attempts.
"""
import logging
import random
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from examhub.core.auth import ASSIGNER_ROLES, TokenData
from examhub.core.clock import as_naive_utc
from examhub.core.config import settings
from examhub.core.errors import Forbidden, NotFound, ValidationError
from examhub.models.orm import (
    Course, Department, Enrollment, Exam, ExamAttempt, ExamAttemptQuestion,
    ExamQuestion, Question, SchoolClass, SelectionMode, Student,
)
from examhub.models.schemas import (
    AssignmentConfig, AssignmentSummary, AssignmentTarget, ClassTarget,
    CourseTarget, DepartmentTarget, StudentFailure, StudentsTarget,
)
from examhub.services.selector import group_by_difficulty, select_questions

logger = logging.getLogger(__name__)


@dataclass
class Recipients:
    """Resolved (student_id, class_id) pairs for one assignment call."""
    students: List[Tuple[int, Optional[int]]] = field(default_factory=list)
    course_id: Optional[int] = None
    failed: List[StudentFailure] = field(default_factory=list)


def _class_students(db: Session, class_id: int) -> List[Tuple[int, Optional[int]]]:
    ids = db.scalars(select(Student.id).where(Student.class_id == class_id).order_by(Student.id)).all()
    return [(sid, class_id) for sid in ids]


def _resolve_department(db: Session, target: DepartmentTarget, config: AssignmentConfig) -> Recipients:
    if db.get(Department, target.department_id) is None:
        raise NotFound("Department not found")
    class_ids = db.scalars(
        select(SchoolClass.id).where(SchoolClass.department_id == target.department_id).order_by(SchoolClass.id)
    ).all()
    if not class_ids:
        raise NotFound("No classes found in this department")
    out = Recipients(course_id=config.course_id)
    for class_id in class_ids:
        out.students.extend(_class_students(db, class_id))
    return out


def _resolve_class(db: Session, target: ClassTarget, config: AssignmentConfig) -> Recipients:
    if db.get(SchoolClass, target.class_id) is None:
        raise NotFound("Class not found")
    # an empty class is a no-op, not an error
    return Recipients(students=_class_students(db, target.class_id), course_id=config.course_id)


def _resolve_course(db: Session, target: CourseTarget, config: AssignmentConfig) -> Recipients:
    if db.get(Course, target.course_id) is None:
        raise NotFound("Course not found")
    student_ids = db.scalars(
        select(Enrollment.student_id).where(Enrollment.course_id == target.course_id).order_by(Enrollment.id)
    ).all()
    if not student_ids:
        raise ValidationError("No students are enrolled in this course")
    # Known oddity: every attempt in a course assignment is stamped with the
    # class of the first enrolled student, whatever class the others are in.
    first = db.get(Student, student_ids[0])
    if first is None or first.class_id is None:
        raise ValidationError("Cannot determine the class for students in this course")
    return Recipients(students=[(sid, first.class_id) for sid in student_ids], course_id=target.course_id)


def _resolve_students(db: Session, target: StudentsTarget, config: AssignmentConfig) -> Recipients:
    student_ids = list(dict.fromkeys(target.student_ids))
    if not student_ids:
        raise ValidationError("At least one student id is required")
    # Same oddity as course targeting: the first listed student's class is
    # stamped on every attempt.
    first = db.get(Student, student_ids[0])
    if first is None or first.class_id is None:
        raise ValidationError("Cannot determine the class for the selected students")
    existing = set(db.scalars(select(Student.id).where(Student.id.in_(student_ids))).all())
    out = Recipients(course_id=config.course_id)
    for sid in student_ids:
        if sid in existing:
            out.students.append((sid, first.class_id))
        else:
            out.failed.append(StudentFailure(student_id=sid, error="Student not found"))
    return out


_RESOLVERS = {
    "department": _resolve_department,
    "class": _resolve_class,
    "course": _resolve_course,
    "students": _resolve_students,
}


def resolve_recipients(db: Session, target: AssignmentTarget, config: AssignmentConfig) -> Recipients:
    return _RESOLVERS[target.type](db, target, config)


def _validate_config(config: AssignmentConfig) -> str:
    name = (config.name or "").strip()
    if not name:
        raise ValidationError("Missing exam name")
    if config.expirate_at is None:
        raise ValidationError("Missing deadline (expirate_at)")
    return name


def create_attempts(
    db: Session,
    user: TokenData,
    exam_id: int,
    target: AssignmentTarget,
    config: AssignmentConfig,
    rng: Optional[random.Random] = None,
) -> AssignmentSummary:
    """
    Create one unstarted ExamAttempt per resolved student.

    The question subset is drawn once per call and shared by every student.
    Each attempt is committed on its own; a failing student is rolled back
    alone and reported in ``failed`` while the others keep their attempts.
    """
    if not user.has_role(*ASSIGNER_ROLES):
        raise Forbidden("Only teachers and admins can assign exams")
    name = _validate_config(config)

    if db.get(Exam, exam_id) is None:
        raise NotFound("Exam not found")
    rows = db.execute(
        select(ExamQuestion.question_id, Question.difficulty)
        .join(Question, Question.id == ExamQuestion.question_id)
        .where(ExamQuestion.exam_id == exam_id)
        .order_by(ExamQuestion.position, ExamQuestion.question_id)
    ).all()
    if not rows:
        raise ValidationError("Exam has no questions")

    recipients = resolve_recipients(db, target, config)

    selected = select_questions(group_by_difficulty(rows), config.difficulty_config, rng)
    if selected:
        mode, question_ids = SelectionMode.STRATIFIED, selected
    else:
        # nothing drawn: freeze the exam's full question list as it is now
        mode, question_ids = SelectionMode.ALL, [qid for qid, _ in rows]

    duration = config.duration or settings.DEFAULT_ATTEMPT_DURATION
    expirate_at = as_naive_utc(config.expirate_at)
    attempt_ids: List[int] = []
    failed = list(recipients.failed)

    for student_id, class_id in recipients.students:
        attempt = ExamAttempt(
            exam_id=exam_id,
            student_id=student_id,
            name=name,
            course_id=recipients.course_id,
            class_id=class_id,
            created_by=user.sub,
            duration=duration,
            selection_mode=mode,
            show_correct_after=config.show_correct_answers,
            expirate_at=expirate_at,
            questions=[ExamAttemptQuestion(question_id=qid, position=i) for i, qid in enumerate(question_ids)],
        )
        try:
            db.add(attempt)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Attempt creation failed for exam {exam_id}, student {student_id}: {e}")
            failed.append(StudentFailure(student_id=student_id, error="Could not create attempt"))
            continue
        attempt_ids.append(attempt.id)

    logger.info(
        f"Assigned exam {exam_id} ({target.type}) by {user.sub}: "
        f"{len(attempt_ids)} created, {len(failed)} failed, {len(question_ids)} questions ({mode.value})"
    )
    return AssignmentSummary(
        created=len(attempt_ids),
        attempt_ids=attempt_ids,
        question_ids=question_ids,
        failed=failed,
        message=f"Exam assigned to {len(attempt_ids)} student(s)",
    )
