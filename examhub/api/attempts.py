from fastapi import APIRouter, Depends
from typing import List
from sqlalchemy.orm import Session
from examhub.core.database import get_db
from examhub.core.auth import get_current_user, require_student, TokenData
from examhub.models.schemas import (
    AttemptResult, AttemptSummary, AttemptView, FinishResult, MarkQuestionsRequest, SaveAnswerRequest,
)
from examhub.services import runtime

router = APIRouter()

@router.get("", response_model=List[AttemptSummary])
def list_attempts(user: TokenData = Depends(require_student), db: Session = Depends(get_db)):
    return runtime.list_student_attempts(db, user)

@router.get("/{attempt_id}", response_model=AttemptView)
def get_attempt(attempt_id: int, user: TokenData = Depends(require_student), db: Session = Depends(get_db)):
    return runtime.open_attempt(db, user, attempt_id)

@router.post("/{attempt_id}/answers")
def save_answer(attempt_id: int, payload: SaveAnswerRequest, user: TokenData = Depends(require_student), db: Session = Depends(get_db)):
    runtime.save_answer(db, user, attempt_id, payload.question_id, payload.answer_id)
    return {"success": True}

@router.post("/{attempt_id}/marks")
def mark_questions(attempt_id: int, payload: MarkQuestionsRequest, user: TokenData = Depends(require_student), db: Session = Depends(get_db)):
    marked = runtime.mark_questions(db, user, attempt_id, payload.marked_questions)
    return {"success": True, "marked_questions": marked}

@router.post("/{attempt_id}/finish", response_model=FinishResult)
def finish_attempt(attempt_id: int, user: TokenData = Depends(require_student), db: Session = Depends(get_db)):
    return runtime.finish_attempt(db, user, attempt_id)

@router.get("/{attempt_id}/result", response_model=AttemptResult)
def get_result(attempt_id: int, user: TokenData = Depends(get_current_user), db: Session = Depends(get_db)):
    return runtime.get_result(db, user, attempt_id)
