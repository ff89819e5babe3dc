from datetime import datetime
from sqlalchemy import DateTime, ForeignKey, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from aiborn.db.base import Base
from aiborn.models.user import new_id


class ReceiptJob(Base):
    """
    Durable record of a queued receipt verification.
    receipt_id is the idempotency key: one job row per receipt, re-run on restart
    while status is queued|processing.
    """

    __tablename__ = "receipt_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)

    receipt_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("receipts.id", ondelete="CASCADE"),
        unique=True,
        index=True,
        nullable=False,
    )

    status: Mapped[str] = mapped_column(
        String(24), nullable=False, server_default="queued", default="queued"
    )  # queued|processing|done|error
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0", default=0)
    error: Mapped[str | None] = mapped_column(String(400), nullable=True)

    queued_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
