from fastapi import Depends, HTTPException, Request, status
from jose import JWTError
from sqlalchemy.orm import Session

from aiborn.core.security import ACCESS, decode_token
from aiborn.db.session import get_db
from aiborn.models.user import User

ACCESS_COOKIE = "access_token"


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def get_current_user(request: Request, db: Session = Depends(get_db)) -> User:
    token = request.cookies.get(ACCESS_COOKIE)
    if not token:
        raise _unauthorized("Not authenticated")

    try:
        payload = decode_token(token)
    except JWTError:
        raise _unauthorized("Invalid access token")

    user_id = payload.get("sub")
    if payload.get("type") != ACCESS or not user_id:
        raise _unauthorized("Invalid access token")

    user = db.get(User, user_id)
    if not user:
        raise _unauthorized("User not found")

    return user
