from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class ExtractionResult:
    """OCR text after PII redaction."""

    success: bool
    redacted_text: str = ""
    pii_detected: list[str] = field(default_factory=list)
    confidence: float = 0.0
    # set when redaction could not be completed with confidence
    requires_manual_review: bool = False
    error: str | None = None


@dataclass
class ParsedReceipt:
    retailer: str | None = None
    amount: float | None = None
    currency: str | None = None
    book_title: str | None = None
    purchase_date: datetime | None = None
    order_number: str | None = None
    format: str | None = None
    confidence: float = 0.0
    requires_manual_review: bool = False
    manual_review_reason: str | None = None
    pii_detected: list[str] = field(default_factory=list)
