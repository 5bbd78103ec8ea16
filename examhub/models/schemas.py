from pydantic import BaseModel, Field, field_validator
from typing import Annotated, Dict, List, Literal, Optional, Union
from datetime import datetime

# ---------- Assignment ----------

class DifficultyConfig(BaseModel):
    easy: int = Field(default=0, ge=0)
    medium: int = Field(default=0, ge=0)
    hard: int = Field(default=0, ge=0)

    def is_empty(self) -> bool:
        return self.easy == 0 and self.medium == 0 and self.hard == 0

class DepartmentTarget(BaseModel):
    type: Literal["department"] = "department"
    department_id: int

class ClassTarget(BaseModel):
    type: Literal["class"] = "class"
    class_id: int

class CourseTarget(BaseModel):
    type: Literal["course"] = "course"
    course_id: int

class StudentsTarget(BaseModel):
    type: Literal["students"] = "students"
    # emptiness is reported by the factory as a ValidationError, not a 422
    student_ids: List[int] = Field(default_factory=list)

AssignmentTarget = Annotated[
    Union[DepartmentTarget, ClassTarget, CourseTarget, StudentsTarget],
    Field(discriminator="type"),
]

class AssignmentConfig(BaseModel):
    name: Optional[str] = None
    expirate_at: Optional[datetime] = None
    duration: Optional[int] = Field(default=None, gt=0)
    show_correct_answers: bool = False
    difficulty_config: DifficultyConfig = Field(default_factory=DifficultyConfig)
    course_id: Optional[int] = None

class AssignRequest(BaseModel):
    target: AssignmentTarget
    config: AssignmentConfig

class StudentFailure(BaseModel):
    student_id: int
    error: str

class AssignmentSummary(BaseModel):
    created: int
    attempt_ids: List[int]
    question_ids: List[int]
    failed: List[StudentFailure] = Field(default_factory=list)
    message: str

# ---------- Exam attempt runtime ----------

class AnswerOut(BaseModel):
    id: int
    content: str
    is_correct: Optional[bool] = None

class QuestionOut(BaseModel):
    id: int
    content: str
    points: float
    answers: List[AnswerOut]

class AttemptView(BaseModel):
    id: int
    exam_id: int
    name: Optional[str]
    duration: int
    started_at: Optional[datetime]
    expirate_at: Optional[datetime]
    time_remaining_seconds: int
    show_correct_after: bool
    questions: List[QuestionOut]
    saved_answers: Dict[int, int]
    marked_questions: List[int]

class AttemptSummary(BaseModel):
    id: int
    exam_id: int
    name: Optional[str]
    status: Literal["not_started", "in_progress", "finished"]
    duration: int
    expirate_at: Optional[datetime]
    started_at: Optional[datetime]
    finished_at: Optional[datetime]
    score: Optional[float]

class SaveAnswerRequest(BaseModel):
    question_id: int
    answer_id: int

class MarkQuestionsRequest(BaseModel):
    marked_questions: List[int]

class FinishResult(BaseModel):
    attempt_id: int
    score: float
    total_points: float
    percentage: int
    finished_at: datetime
    already_finished: bool = False

class ResultQuestion(QuestionOut):
    selected_answer_id: Optional[int] = None
    is_correct: Optional[bool] = None

class AttemptResult(BaseModel):
    id: int
    exam_id: int
    name: Optional[str]
    started_at: Optional[datetime]
    finished_at: datetime
    score: float
    total_points: float
    score_out_of_ten: float
    show_correct_after: bool
    questions: List[ResultQuestion]

# ---------- Quizzes ----------

class SelectionRequest(BaseModel):
    question_id: int
    answer_id: int
    is_selected: bool = True

class QuizSelectionOut(BaseModel):
    question_id: int
    answer_id: int
    is_selected: bool

class QuizAttemptOut(BaseModel):
    id: int
    quiz_id: int
    started_at: datetime
    finished_at: Optional[datetime]
    score: Optional[float]
    questions: List[QuestionOut]
    selections: List[QuizSelectionOut]

class QuizFinishResult(BaseModel):
    attempt_id: int
    score: float
    total_points: float
    percent_score: int
    finished_at: datetime
    already_finished: bool = False

# ---------- Auth ----------

class MockLogin(BaseModel):
    user_id: str
    roles: List[str]
    student_id: Optional[int] = None

    @field_validator("roles")
    @classmethod
    def lower_roles(cls, v: List[str]) -> List[str]:
        return [r.lower() for r in v]
