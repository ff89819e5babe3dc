from fastapi import Depends, HTTPException, status

from aiborn.core.config import settings
from aiborn.core.deps import get_current_user
from aiborn.models.user import User


def is_admin(user: User) -> bool:
    """Single administrator account, configured by ADMIN_EMAIL."""
    return bool(user.email) and user.email.lower() == settings.ADMIN_EMAIL.lower()


def require_admin(user: User = Depends(get_current_user)) -> User:
    if not is_admin(user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin only")
    return user
