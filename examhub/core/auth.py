from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel
from typing import List, Optional
import jwt
from datetime import datetime, timedelta, timezone
from examhub.core.config import settings
from examhub.core.errors import Unauthorized, Forbidden

ROLE_ADMIN = "admin"
ROLE_TEACHER = "teacher"
ASSIGNER_ROLES = (ROLE_TEACHER, ROLE_ADMIN)

class TokenData(BaseModel):
    """Identity of the caller, as issued by the identity collaborator."""
    sub: str
    roles: List[str]
    student_id: Optional[int] = None

    def has_role(self, *roles: str) -> bool:
        return bool(set(self.roles).intersection(roles))

bearer = HTTPBearer(auto_error=False)

def create_token(user_id: str, roles: List[str], student_id: Optional[int] = None, ttl_minutes: Optional[int] = None) -> str:
    now = datetime.now(timezone.utc)
    ttl = ttl_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES
    payload = {"sub": user_id, "roles": roles, "iat": int(now.timestamp()), "exp": int((now + timedelta(minutes=ttl)).timestamp())}
    if student_id is not None:
        payload["student_id"] = student_id
    return jwt.encode(payload, settings.SECRET_KEY.get_secret_value(), algorithm=settings.ALGORITHM)

def decode_token(token: str) -> TokenData:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY.get_secret_value(), algorithms=[settings.ALGORITHM])
    except jwt.PyJWTError:
        raise Unauthorized("Invalid or expired token")
    return TokenData(sub=payload["sub"], roles=payload.get("roles", []), student_id=payload.get("student_id"))

def get_current_user(creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer)) -> TokenData:
    if creds is None:
        raise Unauthorized("Missing bearer token")
    return decode_token(creds.credentials)

def require_roles(*required: str):
    def checker(user: TokenData = Depends(get_current_user)):
        if not user.has_role(*required):
            raise Forbidden("Insufficient role")
        return user
    return checker

def require_student(user: TokenData = Depends(get_current_user)) -> TokenData:
    if user.student_id is None:
        raise Forbidden("Student profile required")
    return user
