from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from aiborn.core.admin import is_admin
from aiborn.core.deps import get_current_user
from aiborn.db.session import get_db
from aiborn.models.receipt import Receipt
from aiborn.models.user import User
from aiborn.routers.receipts import receipt_out
from aiborn.schemas.auth import UserOut
from aiborn.schemas.receipt import ReceiptOut

router = APIRouter(tags=["me"])


@router.get("/me", response_model=UserOut)
def me(user: User = Depends(get_current_user)):
    return UserOut(id=user.id, email=user.email, name=user.name, is_admin=is_admin(user))


@router.get("/me/receipts", response_model=list[ReceiptOut])
def my_receipts(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    rows = (
        db.query(Receipt)
        .filter(Receipt.user_id == user.id)
        .order_by(Receipt.created_at.desc())
        .all()
    )
    return [receipt_out(r) for r in rows]
