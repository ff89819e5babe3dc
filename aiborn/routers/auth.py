import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from jose import JWTError
from sqlalchemy.orm import Session

from aiborn.core.config import settings
from aiborn.core.admin import is_admin
from aiborn.core.deps import ACCESS_COOKIE
from aiborn.core.logging import mask_email
from aiborn.core.security import (
    REFRESH,
    decode_token,
    hash_password,
    make_access_token,
    make_refresh_token,
    new_jti,
    verify_password,
)
from aiborn.db.session import get_db
from aiborn.models.user import User
from aiborn.schemas.auth import LoginIn, SignupIn, UserOut

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger("aiborn.auth")

REFRESH_COOKIE = "refresh_token"


def _set_auth_cookies(resp: Response, access: str, refresh: str):
    common = dict(
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="lax",
        path="/",
    )
    if settings.COOKIE_DOMAIN:
        common["domain"] = settings.COOKIE_DOMAIN

    resp.set_cookie(
        key=ACCESS_COOKIE,
        value=access,
        max_age=settings.ACCESS_TTL_MIN * 60,
        **common,
    )
    resp.set_cookie(
        key=REFRESH_COOKIE,
        value=refresh,
        max_age=settings.REFRESH_TTL_DAYS * 24 * 3600,
        **common,
    )


def _clear_auth_cookies(resp: Response):
    common = dict(path="/")
    if settings.COOKIE_DOMAIN:
        common["domain"] = settings.COOKIE_DOMAIN
    resp.delete_cookie(ACCESS_COOKIE, **common)
    resp.delete_cookie(REFRESH_COOKIE, **common)


def _start_session(db: Session, user: User, response: Response) -> UserOut:
    # every login rotates the refresh jti, revoking older sessions
    user.refresh_jti = new_jti()
    db.add(user)
    db.commit()
    db.refresh(user)

    _set_auth_cookies(
        response,
        make_access_token(user.id),
        make_refresh_token(user.id, user.refresh_jti),
    )
    return UserOut(id=user.id, email=user.email, name=user.name, is_admin=is_admin(user))


@router.post("/signup", response_model=UserOut)
def signup(payload: SignupIn, response: Response, db: Session = Depends(get_db)):
    email = payload.email.lower().strip()

    user = db.query(User).filter(User.email == email).first()
    if user and user.password_hash:
        raise HTTPException(status_code=409, detail="Email already in use")

    if user is None:
        user = User(email=email)
    # accounts created by the public claim form have no password yet
    user.password_hash = hash_password(payload.password)
    if payload.name:
        user.name = payload.name.strip()
    logger.info("Signup %s", mask_email(email))
    return _start_session(db, user, response)


@router.post("/login", response_model=UserOut)
def login(payload: LoginIn, response: Response, db: Session = Depends(get_db)):
    email = payload.email.lower().strip()
    user = db.query(User).filter(User.email == email).first()

    if not user or not user.password_hash:
        raise HTTPException(status_code=401, detail="Invalid credentials")

    if not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")

    return _start_session(db, user, response)


def _refresh_claims(request: Request) -> tuple[str, str]:
    token = request.cookies.get(REFRESH_COOKIE)
    if not token:
        raise HTTPException(status_code=401, detail="Missing refresh token")

    try:
        payload = decode_token(token)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid refresh token")

    user_id = payload.get("sub")
    jti = payload.get("jti")
    if payload.get("type") != REFRESH or not user_id or not jti:
        raise HTTPException(status_code=401, detail="Invalid refresh token")
    return user_id, jti


@router.post("/refresh")
def refresh(request: Request, response: Response, db: Session = Depends(get_db)):
    user_id, jti = _refresh_claims(request)

    user = db.get(User, user_id)
    if not user or not user.refresh_jti or user.refresh_jti != jti:
        raise HTTPException(status_code=401, detail="Refresh token revoked")

    _start_session(db, user, response)
    return {"ok": True}


@router.post("/logout")
def logout(request: Request, response: Response, db: Session = Depends(get_db)):
    # revoke the current session if the refresh cookie is still good
    try:
        user_id, _ = _refresh_claims(request)
    except HTTPException:
        user_id = None
    if user_id:
        user = db.get(User, user_id)
        if user:
            user.refresh_jti = None
            db.add(user)
            db.commit()

    _clear_auth_cookies(response)
    return {"ok": True}
