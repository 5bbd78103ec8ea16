from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy import (
    BigInteger, Integer, String, Text, Boolean, Float, ForeignKey, DateTime,
    UniqueConstraint, Index, CheckConstraint, Enum as SQLEnum,
)
from datetime import datetime
from typing import List, Optional
import enum
from examhub.core.clock import utcnow

# SQLite only autoincrements INTEGER PRIMARY KEY
BigIntPK = BigInteger().with_variant(Integer, "sqlite")

class Base(DeclarativeBase): pass

class DifficultyLevel(str, enum.Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"

class SelectionMode(str, enum.Enum):
    ALL = "all"
    STRATIFIED = "stratified"

# ========== Organisation (read-only collaborators) ==========

class Department(Base):
    __tablename__ = "departments"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    classes: Mapped[List["SchoolClass"]] = relationship(back_populates="department")

class SchoolClass(Base):
    __tablename__ = "classes"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    department_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("departments.id"), nullable=True, index=True)
    department: Mapped[Optional["Department"]] = relationship(back_populates="classes")
    students: Mapped[List["Student"]] = relationship(back_populates="school_class")

class Student(Base):
    __tablename__ = "students"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), index=True)
    class_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("classes.id"), nullable=True, index=True)
    school_class: Mapped[Optional["SchoolClass"]] = relationship(back_populates="students")

class Course(Base):
    __tablename__ = "courses"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    title: Mapped[str] = mapped_column(String(255))

class Enrollment(Base):
    __tablename__ = "enrollments"
    __table_args__ = (UniqueConstraint("course_id", "student_id", name="uq_enrollment"),)
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    course_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("courses.id"), index=True)
    student_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("students.id"), index=True)
    enrolled_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

# ========== Question bank (read-only from this service) ==========

class Question(Base):
    __tablename__ = "questions"
    __table_args__ = (CheckConstraint("points > 0", name="ck_question_points"),)
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    content: Mapped[str] = mapped_column(Text)
    points: Mapped[float] = mapped_column(Float, default=1.0)
    difficulty: Mapped[DifficultyLevel] = mapped_column(SQLEnum(DifficultyLevel), default=DifficultyLevel.MEDIUM, index=True)
    answers: Mapped[List["Answer"]] = relationship(back_populates="question", order_by="Answer.id")

class Answer(Base):
    __tablename__ = "answers"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    question_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("questions.id", ondelete="CASCADE"), index=True)
    content: Mapped[str] = mapped_column(Text)
    is_correct: Mapped[bool] = mapped_column(Boolean, default=False)
    question: Mapped["Question"] = relationship(back_populates="answers")

class Exam(Base):
    __tablename__ = "exams"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    title: Mapped[str] = mapped_column(String(255))
    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    questions: Mapped[List["ExamQuestion"]] = relationship(back_populates="exam", order_by="ExamQuestion.position", cascade="all, delete-orphan")

class ExamQuestion(Base):
    __tablename__ = "exam_questions"
    exam_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("exams.id", ondelete="CASCADE"), primary_key=True)
    question_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("questions.id", ondelete="CASCADE"), primary_key=True)
    position: Mapped[int] = mapped_column(Integer, default=0)
    exam: Mapped["Exam"] = relationship(back_populates="questions")
    question: Mapped["Question"] = relationship()

# ========== Exam attempts ==========

class ExamAttempt(Base):
    __tablename__ = "exam_attempts"
    __table_args__ = (
        Index("idx_ea_student", "student_id"),
        Index("idx_ea_exam", "exam_id"),
        Index("idx_ea_open", "finished_at", "started_at"),
        CheckConstraint("duration > 0", name="ck_exam_attempt_duration"),
    )
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    exam_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("exams.id"))
    student_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("students.id"))
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    course_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("courses.id"), nullable=True)
    class_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("classes.id"), nullable=True)
    created_by: Mapped[str] = mapped_column(String(255))
    duration: Mapped[int] = mapped_column(Integer, default=60)  # minutes
    selection_mode: Mapped[SelectionMode] = mapped_column(SQLEnum(SelectionMode), default=SelectionMode.ALL)
    show_correct_after: Mapped[bool] = mapped_column(Boolean, default=False)
    expirate_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    score: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    exam: Mapped["Exam"] = relationship()
    questions: Mapped[List["ExamAttemptQuestion"]] = relationship(
        back_populates="attempt", order_by="ExamAttemptQuestion.position", cascade="all, delete-orphan"
    )
    answers: Mapped[List["StudentAnswer"]] = relationship(back_populates="attempt", cascade="all, delete-orphan")
    marks: Mapped[List["MarkedQuestion"]] = relationship(back_populates="attempt", cascade="all, delete-orphan")

class ExamAttemptQuestion(Base):
    __tablename__ = "exam_attempt_questions"
    attempt_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("exam_attempts.id", ondelete="CASCADE"), primary_key=True)
    question_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("questions.id"), primary_key=True)
    position: Mapped[int] = mapped_column(Integer, default=0)
    attempt: Mapped["ExamAttempt"] = relationship(back_populates="questions")
    question: Mapped["Question"] = relationship()

class StudentAnswer(Base):
    __tablename__ = "student_answers"
    __table_args__ = (UniqueConstraint("attempt_id", "question_id", name="uq_student_answer"),)
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    attempt_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("exam_attempts.id", ondelete="CASCADE"), index=True)
    question_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("questions.id"))
    answer_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("answers.id"))
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
    attempt: Mapped["ExamAttempt"] = relationship(back_populates="answers")

class MarkedQuestion(Base):
    __tablename__ = "marked_questions"
    attempt_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("exam_attempts.id", ondelete="CASCADE"), primary_key=True)
    question_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("questions.id"), primary_key=True)
    attempt: Mapped["ExamAttempt"] = relationship(back_populates="marks")

# ========== Lesson quizzes ==========

class Quiz(Base):
    __tablename__ = "quizzes"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    title: Mapped[str] = mapped_column(String(255))
    course_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("courses.id"), nullable=True)
    questions: Mapped[List["QuizQuestion"]] = relationship(back_populates="quiz", order_by="QuizQuestion.position", cascade="all, delete-orphan")

class QuizQuestion(Base):
    __tablename__ = "quiz_questions"
    quiz_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("quizzes.id", ondelete="CASCADE"), primary_key=True)
    question_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("questions.id"), primary_key=True)
    position: Mapped[int] = mapped_column(Integer, default=0)
    quiz: Mapped["Quiz"] = relationship(back_populates="questions")
    question: Mapped["Question"] = relationship()

class QuizAttempt(Base):
    __tablename__ = "quiz_attempts"
    __table_args__ = (Index("idx_qa_student_quiz", "student_id", "quiz_id"),)
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    quiz_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("quizzes.id"))
    student_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("students.id"))
    started_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    score: Mapped[float | None] = mapped_column(Float, nullable=True)
    selections: Mapped[List["QuizSelection"]] = relationship(back_populates="attempt", cascade="all, delete-orphan", order_by="QuizSelection.id")

class QuizSelection(Base):
    __tablename__ = "quiz_selections"
    __table_args__ = (UniqueConstraint("attempt_id", "question_id", "answer_id", name="uq_quiz_selection"),)
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    attempt_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("quiz_attempts.id", ondelete="CASCADE"), index=True)
    question_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("questions.id"))
    answer_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("answers.id"))
    is_selected: Mapped[bool] = mapped_column(Boolean, default=False)
    attempt: Mapped["QuizAttempt"] = relationship(back_populates="selections")
