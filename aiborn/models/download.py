from datetime import datetime
from sqlalchemy import DateTime, ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column

from aiborn.db.base import Base
from aiborn.models.user import new_id


class BonusDownload(Base):
    """One served bonus-pack file = one record."""

    __tablename__ = "bonus_downloads"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    claim_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("bonus_claims.id", ondelete="CASCADE"), index=True
    )
    asset: Mapped[str] = mapped_column(String(64), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)

    downloaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
