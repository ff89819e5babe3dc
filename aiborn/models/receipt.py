from datetime import datetime
from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from aiborn.db.base import Base
from aiborn.models.user import new_id


class ReceiptStatus:
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"
    DUPLICATE = "DUPLICATE"


BOOK_FORMATS = ("hardcover", "paperback", "ebook", "audiobook")

ReceiptStatusEnum = Enum(
    ReceiptStatus.PENDING,
    ReceiptStatus.VERIFIED,
    ReceiptStatus.REJECTED,
    ReceiptStatus.DUPLICATE,
    name="receipt_status",
)
BookFormatEnum = Enum(*BOOK_FORMATS, name="book_format")


class Receipt(Base):
    """
    One uploaded proof-of-purchase. file_hash is unique across all receipts,
    so the same file can never be processed twice.
    """

    __tablename__ = "receipts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True
    )

    retailer: Mapped[str | None] = mapped_column(String(120), nullable=True)
    order_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    format: Mapped[str | None] = mapped_column(BookFormatEnum, nullable=True)
    purchase_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    status: Mapped[str] = mapped_column(
        ReceiptStatusEnum, nullable=False, server_default=ReceiptStatus.PENDING
    )

    file_url: Mapped[str] = mapped_column(String(500), nullable=False)
    file_hash: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)

    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # admin user id for manual review
    verified_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    requires_manual_review: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default="false", default=False
    )
    verification_score: Mapped[int | None] = mapped_column(Integer, nullable=True)

    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    bonus_claim: Mapped["BonusClaim"] = relationship(
        back_populates="receipt", uselist=False
    )


class BonusClaimStatus:
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    DELIVERED = "DELIVERED"


BonusClaimStatusEnum = Enum(
    BonusClaimStatus.PENDING,
    BonusClaimStatus.PROCESSING,
    BonusClaimStatus.APPROVED,
    BonusClaimStatus.REJECTED,
    BonusClaimStatus.DELIVERED,
    name="bonus_claim_status",
)


class BonusClaim(Base):
    """
    Eligibility for the bonus pack, 1:1 with a receipt.
    PENDING -> APPROVED when the receipt is verified -> DELIVERED once the email went out.
    """

    __tablename__ = "bonus_claims"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    receipt_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("receipts.id", ondelete="CASCADE"), unique=True, index=True
    )

    status: Mapped[str] = mapped_column(
        BonusClaimStatusEnum, nullable=False, server_default=BonusClaimStatus.PENDING
    )

    # may differ from the account email
    delivery_email: Mapped[str] = mapped_column(String(320), nullable=False)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # email provider message id
    delivery_tracking_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    receipt: Mapped[Receipt] = relationship(back_populates="bonus_claim")
