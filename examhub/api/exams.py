from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from examhub.core.database import get_db
from examhub.core.auth import require_roles, TokenData, ASSIGNER_ROLES
from examhub.models.schemas import AssignRequest, AssignmentSummary
from examhub.services.assignment import create_attempts

router = APIRouter()

@router.post("/{exam_id}/assign", response_model=AssignmentSummary, status_code=201)
def assign_exam(exam_id: int, payload: AssignRequest, user: TokenData = Depends(require_roles(*ASSIGNER_ROLES)), db: Session = Depends(get_db)):
    return create_attempts(db, user, exam_id, payload.target, payload.config)
