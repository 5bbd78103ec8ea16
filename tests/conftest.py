import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "testing"
os.environ["PROMETHEUS_ENABLED"] = "false"
os.environ["AUTO_CREATE_TABLES"] = "false"

import pytest
from fastapi.testclient import TestClient

from examhub.core.auth import TokenData, create_token
from examhub.core.database import SessionLocal, engine, get_db
from examhub.models.orm import (
    Answer, Base, Course, Department, DifficultyLevel, Enrollment, Exam, ExamQuestion,
    Question, Quiz, QuizQuestion, SchoolClass, Student,
)


@pytest.fixture(autouse=True)
def schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    from examhub.main import app

    def _override():
        session = SessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _override
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def teacher():
    return TokenData(sub="teacher-1", roles=["teacher"])


def student_identity(student_id: int) -> TokenData:
    return TokenData(sub=f"user-{student_id}", roles=["student"], student_id=student_id)


def auth_header(user_id: str, roles, student_id=None) -> dict:
    return {"Authorization": f"Bearer {create_token(user_id, list(roles), student_id=student_id)}"}


# ---------- seeding ----------

def add_question(db, content, difficulty=DifficultyLevel.MEDIUM, points=1.0, n_answers=3, correct=0) -> Question:
    q = Question(content=content, difficulty=difficulty, points=points)
    q.answers = [Answer(content=f"{content} / option {i}", is_correct=(i == correct)) for i in range(n_answers)]
    db.add(q)
    db.flush()
    return q


def add_exam(db, questions, title="Midterm") -> Exam:
    exam = Exam(title=title, created_by="teacher-1")
    exam.questions = [ExamQuestion(question_id=q.id, position=i) for i, q in enumerate(questions)]
    db.add(exam)
    db.commit()
    return exam


def add_class(db, n_students, department=None, name="Class") -> SchoolClass:
    cls = SchoolClass(name=name, department_id=department.id if department else None)
    db.add(cls)
    db.flush()
    for i in range(n_students):
        db.add(Student(user_id=f"{name}-student-{i}", class_id=cls.id))
    db.commit()
    return cls


def add_department(db, class_sizes, name="Science") -> Department:
    dept = Department(name=name)
    db.add(dept)
    db.flush()
    for i, size in enumerate(class_sizes):
        add_class(db, size, department=dept, name=f"{name}-{i}")
    db.commit()
    return dept


def add_student(db, class_id=None, user_id="loner") -> Student:
    s = Student(user_id=user_id, class_id=class_id)
    db.add(s)
    db.commit()
    return s


def add_course(db, students, title="Algebra") -> Course:
    course = Course(title=title)
    db.add(course)
    db.flush()
    for s in students:
        db.add(Enrollment(course_id=course.id, student_id=s.id))
    db.commit()
    return course


def add_quiz(db, questions, title="Lesson 1 quiz") -> Quiz:
    quiz = Quiz(title=title)
    quiz.questions = [QuizQuestion(question_id=q.id, position=i) for i, q in enumerate(questions)]
    db.add(quiz)
    db.commit()
    return quiz


def correct_answer(q: Question) -> Answer:
    return next(a for a in q.answers if a.is_correct)


def wrong_answer(q: Question) -> Answer:
    return next(a for a in q.answers if not a.is_correct)
