from datetime import datetime
from pydantic import BaseModel, Field


class ReviewItemOut(BaseModel):
    receipt_id: str
    user_email: str
    status: str
    retailer: str | None
    order_number: str | None
    format: str | None
    verification_score: int | None
    requires_manual_review: bool
    rejection_reason: str | None
    created_at: datetime
    claim_id: str | None
    claim_status: str | None
    delivery_email: str | None


class ApproveIn(BaseModel):
    notes: str | None = Field(default=None, max_length=2000)


class RejectIn(BaseModel):
    reason: str = Field(min_length=1, max_length=2000)


class ResendOut(BaseModel):
    success: bool
    claim_id: str
    claim_status: str
    delivered_at: datetime | None
    delivery_tracking_id: str | None
    error: str | None = None


class StatusCounts(BaseModel):
    pending: int
    verified: int
    rejected: int
    manual_review: int


class PipelineSummaryOut(BaseModel):
    start_utc: datetime
    end_utc: datetime
    receipts: StatusCounts
    claims_delivered: int
    claims_awaiting_delivery: int  # approved, email not sent
    downloads: int
    jobs_unfinished: int
