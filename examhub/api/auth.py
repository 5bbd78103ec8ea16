from fastapi import APIRouter
from examhub.core.auth import create_token
from examhub.core.config import settings
from examhub.core.errors import NotFound
from examhub.models.schemas import MockLogin

router = APIRouter()

@router.post("/mock-login")
def mock_login(payload: MockLogin):
    if not settings.ENABLE_MOCK_LOGIN:
        raise NotFound("Not found")
    token = create_token(payload.user_id, payload.roles, student_id=payload.student_id)
    return {"access_token": token, "token_type": "bearer", "roles": payload.roles, "student_id": payload.student_id}
