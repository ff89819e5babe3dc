from datetime import datetime
from sqlalchemy import DateTime, Enum, ForeignKey, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from aiborn.db.base import Base
from aiborn.models.user import new_id

CODE_TYPES = ("VIP_PREVIEW", "VIP_BONUS", "VIP_LAUNCH", "PARTNER", "MEDIA", "INFLUENCER")
CODE_STATUSES = ("ACTIVE", "REDEEMED", "EXPIRED", "REVOKED")

CodeType = Enum(*CODE_TYPES, name="code_type")
CodeStatus = Enum(*CODE_STATUSES, name="code_status")


class Code(Base):
    __tablename__ = "codes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)

    code: Mapped[str] = mapped_column(String(32), unique=True, index=True, nullable=False)
    type: Mapped[str] = mapped_column(CodeType, nullable=False)
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)

    status: Mapped[str] = mapped_column(
        CodeStatus, nullable=False, server_default="ACTIVE", default="ACTIVE"
    )
    redemption_count: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default="0", default=0
    )
    # null = unlimited
    max_redemptions: Mapped[int | None] = mapped_column(Integer, nullable=True)

    valid_from: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    valid_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_by: Mapped[str | None] = mapped_column(String(36), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class CodeRedemption(Base):
    __tablename__ = "code_redemptions"
    __table_args__ = (UniqueConstraint("code_id", "user_id", name="uq_code_redemption_user"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    code_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("codes.id", ondelete="CASCADE"), index=True
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    redeemed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
