import random
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from conftest import (
    add_class, add_course, add_department, add_exam, add_question, add_student, student_identity,
)
from examhub.core.auth import TokenData
from examhub.core.errors import Forbidden, NotFound, ValidationError
from examhub.models.orm import (
    DifficultyLevel, ExamAttempt, ExamAttemptQuestion, ExamQuestion, SelectionMode,
)
from examhub.models.schemas import (
    AssignmentConfig, ClassTarget, CourseTarget, DepartmentTarget, DifficultyConfig, StudentsTarget,
)
from examhub.services.assignment import create_attempts
from examhub.services.runtime import finish_attempt, open_attempt, save_answer

DEADLINE = datetime(2030, 1, 1, 12, 0)


def config(**kw):
    kw.setdefault("name", "Midterm")
    kw.setdefault("expirate_at", DEADLINE)
    return AssignmentConfig(**kw)


def attempt_count(db):
    return db.scalar(select(func.count(ExamAttempt.id)))


@pytest.fixture
def exam(db):
    questions = [
        add_question(db, "e1", DifficultyLevel.EASY, 1),
        add_question(db, "e2", DifficultyLevel.EASY, 1),
        add_question(db, "m1", DifficultyLevel.MEDIUM, 2),
        add_question(db, "h1", DifficultyLevel.HARD, 3),
    ]
    return add_exam(db, questions)


def test_class_target_creates_one_attempt_per_student(db, teacher, exam):
    cls = add_class(db, 4)
    summary = create_attempts(db, teacher, exam.id, ClassTarget(class_id=cls.id), config())
    assert summary.created == 4
    assert len(summary.attempt_ids) == 4
    assert summary.failed == []
    assert summary.message == "Exam assigned to 4 student(s)"
    for a in db.scalars(select(ExamAttempt)).all():
        assert a.class_id == cls.id
        assert a.started_at is None and a.finished_at is None and a.score is None
        assert a.created_by == "teacher-1"


def test_department_target_sums_over_classes(db, teacher, exam):
    dept = add_department(db, [3, 0, 5])
    summary = create_attempts(db, teacher, exam.id, DepartmentTarget(department_id=dept.id), config())
    assert summary.created == 8
    assert attempt_count(db) == 8


def test_department_without_classes_is_not_found(db, teacher, exam):
    dept = add_department(db, [])
    with pytest.raises(NotFound):
        create_attempts(db, teacher, exam.id, DepartmentTarget(department_id=dept.id), config())


def test_empty_class_is_a_no_op(db, teacher, exam):
    cls = add_class(db, 0)
    summary = create_attempts(db, teacher, exam.id, ClassTarget(class_id=cls.id), config())
    assert summary.created == 0
    assert attempt_count(db) == 0


def test_empty_students_list_fails_before_creating_anything(db, teacher, exam):
    with pytest.raises(ValidationError):
        create_attempts(db, teacher, exam.id, StudentsTarget(student_ids=[]), config())
    assert attempt_count(db) == 0


def test_students_target_reports_missing_ids(db, teacher, exam):
    cls = add_class(db, 2)
    s1, s2 = sorted(s.id for s in cls.students)
    summary = create_attempts(db, teacher, exam.id, StudentsTarget(student_ids=[s1, s2, s1, 999]), config())
    assert summary.created == 2
    assert [(f.student_id, f.error) for f in summary.failed] == [(999, "Student not found")]


def test_students_target_uses_first_students_class(db, teacher, exam):
    a = add_class(db, 1, name="A")
    b = add_class(db, 1, name="B")
    first, second = a.students[0].id, b.students[0].id
    create_attempts(db, teacher, exam.id, StudentsTarget(student_ids=[first, second]), config())
    assert {x.class_id for x in db.scalars(select(ExamAttempt)).all()} == {a.id}


def test_course_target_stamps_first_enrolled_students_class(db, teacher, exam):
    a = add_class(db, 1, name="A")
    b = add_class(db, 2, name="B")
    course = add_course(db, [a.students[0]] + list(b.students))
    summary = create_attempts(db, teacher, exam.id, CourseTarget(course_id=course.id), config())
    assert summary.created == 3
    attempts = db.scalars(select(ExamAttempt)).all()
    assert {x.class_id for x in attempts} == {a.id}
    assert {x.course_id for x in attempts} == {course.id}


def test_course_without_enrollments_is_rejected(db, teacher, exam):
    course = add_course(db, [])
    with pytest.raises(ValidationError):
        create_attempts(db, teacher, exam.id, CourseTarget(course_id=course.id), config())


def test_course_whose_first_student_has_no_class_is_rejected(db, teacher, exam):
    course = add_course(db, [add_student(db, class_id=None)])
    with pytest.raises(ValidationError):
        create_attempts(db, teacher, exam.id, CourseTarget(course_id=course.id), config())


def test_only_teachers_and_admins_may_assign(db, exam):
    cls = add_class(db, 1)
    with pytest.raises(Forbidden):
        create_attempts(db, student_identity(1), exam.id, ClassTarget(class_id=cls.id), config())
    admin = TokenData(sub="root", roles=["admin"])
    assert create_attempts(db, admin, exam.id, ClassTarget(class_id=cls.id), config()).created == 1


@pytest.mark.parametrize("cfg", [
    dict(name="  "),
    dict(name=None),
    dict(expirate_at=None),
])
def test_name_and_deadline_are_required(db, teacher, exam, cfg):
    cls = add_class(db, 1)
    kw = {"name": "Midterm", "expirate_at": DEADLINE}
    kw.update(cfg)
    with pytest.raises(ValidationError):
        create_attempts(db, teacher, exam.id, ClassTarget(class_id=cls.id), AssignmentConfig(**kw))


def test_unknown_exam_and_target(db, teacher, exam):
    cls = add_class(db, 1)
    with pytest.raises(NotFound):
        create_attempts(db, teacher, 999, ClassTarget(class_id=cls.id), config())
    with pytest.raises(NotFound):
        create_attempts(db, teacher, exam.id, ClassTarget(class_id=999), config())


def test_exam_without_questions_is_rejected(db, teacher):
    cls = add_class(db, 1)
    empty = add_exam(db, [], title="Empty")
    with pytest.raises(ValidationError):
        create_attempts(db, teacher, empty.id, ClassTarget(class_id=cls.id), config())


def test_stratified_draw_is_shared_by_every_student(db, teacher, exam):
    cls = add_class(db, 3)
    summary = create_attempts(
        db, teacher, exam.id, ClassTarget(class_id=cls.id),
        config(difficulty_config=DifficultyConfig(easy=1, medium=1)), rng=random.Random(5),
    )
    assert len(summary.question_ids) == 2
    for a in db.scalars(select(ExamAttempt)).all():
        assert a.selection_mode == SelectionMode.STRATIFIED
        assert [x.question_id for x in a.questions] == summary.question_ids


def test_empty_difficulty_config_freezes_every_exam_question(db, teacher, exam):
    cls = add_class(db, 1)
    summary = create_attempts(db, teacher, exam.id, ClassTarget(class_id=cls.id), config())
    attempt = db.get(ExamAttempt, summary.attempt_ids[0])
    assert attempt.selection_mode == SelectionMode.ALL
    assert [x.question_id for x in attempt.questions] == [eq.question_id for eq in exam.questions]


def test_defaults_and_timezone_normalisation(db, teacher, exam):
    cls = add_class(db, 1)
    aware = datetime(2030, 1, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))
    summary = create_attempts(
        db, teacher, exam.id, ClassTarget(class_id=cls.id),
        config(expirate_at=aware, show_correct_answers=True),
    )
    attempt = db.get(ExamAttempt, summary.attempt_ids[0])
    assert attempt.duration == 60
    assert attempt.show_correct_after is True
    assert attempt.expirate_at == DEADLINE


def test_snapshot_survives_exam_edits(db, teacher, exam):
    cls = add_class(db, 1)
    summary = create_attempts(db, teacher, exam.id, ClassTarget(class_id=cls.id), config())
    attempt_id = summary.attempt_ids[0]
    frozen = [x.question_id for x in db.get(ExamAttempt, attempt_id).questions]

    removed = frozen[0]
    db.delete(db.get(ExamQuestion, (exam.id, removed)))
    extra = add_question(db, "late addition", DifficultyLevel.EASY, 5)
    db.add(ExamQuestion(exam_id=exam.id, question_id=extra.id, position=10))
    db.commit()

    snapshot = db.scalars(
        select(ExamAttemptQuestion.question_id)
        .where(ExamAttemptQuestion.attempt_id == attempt_id)
        .order_by(ExamAttemptQuestion.position)
    ).all()
    assert snapshot == frozen

    student = student_identity(db.get(ExamAttempt, attempt_id).student_id)
    view = open_attempt(db, student, attempt_id)
    assert [q.id for q in view.questions] == frozen
    first = db.get(ExamAttempt, attempt_id).questions[0].question
    save_answer(db, student, attempt_id, removed, next(a.id for a in first.answers if a.is_correct))
    result = finish_attempt(db, student, attempt_id)
    assert result.total_points == 7
    assert result.score == 1
