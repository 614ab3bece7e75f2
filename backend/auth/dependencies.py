from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWTError
from sqlalchemy.orm import Session

from backend.auth import jwt_handler
from backend.database import get_db
from backend.models.user import ROLES, User
from backend.scheduling.context import Principal, RequestContext
from backend.scheduling.repository import UserRepository

security = HTTPBearer()


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    token = credentials.credentials
    try:
        payload = jwt_handler.decode_access_token(token)
    except PyJWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc

    email = payload.get("sub")
    if not email:
        raise HTTPException(status_code=401, detail="Invalid token subject")

    user = UserRepository.get_by_email(db, email.strip().lower())
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")
    claimed_role = payload.get("role")
    if claimed_role is not None and claimed_role != user.role:
        raise HTTPException(status_code=401, detail="Token role does not match user")
    if user.role not in ROLES:
        raise HTTPException(status_code=403, detail="Not permitted.")
    return user


def get_current_principal(current_user: User = Depends(get_current_user)) -> Principal:
    return Principal(user_id=current_user.id, role=current_user.role, hospital_id=current_user.hospital_id)


def get_request_context(principal: Principal = Depends(get_current_principal)) -> RequestContext:
    return RequestContext(principal=principal)
