from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from examhub.core.database import get_db
from examhub.core.auth import require_student, TokenData
from examhub.models.schemas import QuizAttemptOut, QuizFinishResult, QuizSelectionOut, SelectionRequest
from examhub.services import quiz_runtime

router = APIRouter()

@router.post("/{quiz_id}/start", response_model=QuizAttemptOut)
def start_quiz(quiz_id: int, user: TokenData = Depends(require_student), db: Session = Depends(get_db)):
    return quiz_runtime.start_quiz(db, user, quiz_id)

@router.post("/attempts/{attempt_id}/answers", response_model=QuizSelectionOut)
def select_answer(attempt_id: int, payload: SelectionRequest, user: TokenData = Depends(require_student), db: Session = Depends(get_db)):
    return quiz_runtime.set_selection(db, user, attempt_id, payload.question_id, payload.answer_id, payload.is_selected)

@router.post("/attempts/{attempt_id}/finish", response_model=QuizFinishResult)
def finish_quiz(attempt_id: int, user: TokenData = Depends(require_student), db: Session = Depends(get_db)):
    return quiz_runtime.finish_quiz(db, user, attempt_id)
