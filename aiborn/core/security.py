import secrets
from datetime import timedelta
from typing import Any

from jose import jwt
from passlib.context import CryptContext

from aiborn.core.config import settings
from aiborn.core.timeutil import utcnow

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

ALGO = "HS256"

ACCESS = "access"
REFRESH = "refresh"


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def new_jti() -> str:
    return secrets.token_hex(16)  # 32 chars


def _session_token(user_id: str, token_type: str, ttl: timedelta, **extra: Any) -> str:
    now = utcnow()
    payload: dict[str, Any] = {
        "iss": settings.JWT_ISSUER,
        "sub": user_id,
        "type": token_type,
        "exp": now + ttl,
        "iat": now,
        **extra,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=ALGO)


def make_access_token(user_id: str) -> str:
    return _session_token(user_id, ACCESS, timedelta(minutes=settings.ACCESS_TTL_MIN))


def make_refresh_token(user_id: str, jti: str) -> str:
    return _session_token(user_id, REFRESH, timedelta(days=settings.REFRESH_TTL_DAYS), jti=jti)


def decode_token(token: str) -> dict[str, Any]:
    """Raises jose.JWTError for bad signature, issuer or expiry."""
    return jwt.decode(token, settings.JWT_SECRET, algorithms=[ALGO], issuer=settings.JWT_ISSUER)
