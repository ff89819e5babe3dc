from datetime import datetime
from pydantic import BaseModel


class ReceiptAcceptedOut(BaseModel):
    success: bool = True
    receipt_id: str
    claim_id: str
    status: str
    message: str


class ReceiptOut(BaseModel):
    id: str
    status: str
    retailer: str | None
    order_number: str | None
    format: str | None
    purchase_date: datetime | None
    verified_at: datetime | None
    rejection_reason: str | None
    requires_manual_review: bool
    verification_score: int | None
    created_at: datetime
    claim_status: str | None = None
    delivered_at: datetime | None = None


class ProcessingOut(BaseModel):
    """What an admin action on a receipt produced."""

    success: bool
    receipt_id: str
    status: str | None
    retailer: str | None = None
    amount: float | None = None
    currency: str | None = None
    book_title: str | None = None
    purchase_date: datetime | None = None
    format: str | None = None
    confidence: float = 0.0
    verification_score: int = 0
    requires_manual_review: bool = False
    manual_review_reason: str | None = None
    fraud_reasons: list[str] = []
    pii_detected: list[str] = []
    claim_status: str | None = None
    delivered_at: datetime | None = None
    delivery_tracking_id: str | None = None
    error: str | None = None
