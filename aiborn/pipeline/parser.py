"""
LLM receipt parsing: redacted OCR text in, `ParsedReceipt` out.

LLM failures never raise out of `parse`; they come back as a zero-confidence
result flagged for manual review. A missing API key does raise
(`ConfigurationError`) so a misconfigured server cannot auto-reject receipts.
"""
import logging
from datetime import datetime, timezone
from typing import Any

from aiborn.core.timeutil import utcnow
from aiborn.pipeline.llm import LlmClient, LlmError
from aiborn.pipeline.types import ParsedReceipt

logger = logging.getLogger("aiborn.parser")

PROMPT = """You are a receipt verification expert. Analyze the following receipt text and extract key information.

RECEIPT TEXT:
{text}

Extract:
1. RETAILER: retailer/bookstore name (Amazon, Barnes & Noble, Bookshop.org, Apple Books, Google Play, Kobo, indie bookstore, ...)
2. AMOUNT: purchase total (number only)
3. CURRENCY: ISO code (USD, GBP, EUR, AUD, ...)
4. BOOK TITLE: the book title as printed, if "{title}" appears
5. PURCHASE DATE: YYYY-MM-DD
6. ORDER NUMBER
7. FORMAT: hardcover, paperback, ebook or audiobook
8. PII: categories of personal information still visible

Set requiresManualReview to true when confidence is below 0.7, the receipt looks
suspicious, the title does not match "{title}", the amount looks wrong, the
image quality is poor, or important information is missing.

Respond ONLY with JSON:
{{
  "retailer": string | null,
  "amount": number | null,
  "currency": string | null,
  "bookTitle": string | null,
  "purchaseDate": string | null,
  "orderNumber": string | null,
  "format": "hardcover" | "paperback" | "ebook" | "audiobook" | null,
  "piiDetected": string[],
  "requiresManualReview": boolean,
  "manualReviewReason": string | null,
  "overallConfidence": number
}}"""


def normalize_format(value: str | None) -> str | None:
    if not value:
        return None
    v = value.lower().strip()
    if "paper" in v or "softcover" in v:
        return "paperback"
    if "hard" in v or "physical" in v or "print" in v:
        return "hardcover"
    if "audio" in v or "audible" in v:
        return "audiobook"
    if "ebook" in v or "e-book" in v or "kindle" in v or "digital" in v:
        return "ebook"
    return None


def parse_purchase_date(value: str | None) -> datetime | None:
    """Unparseable or future dates become None."""
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    if dt > utcnow():
        return None
    return dt


def _amount(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(str(value).replace(",", "").lstrip("$£€"))
    except ValueError:
        return None


def _confidence(value: Any) -> float:
    try:
        c = float(value)
    except (TypeError, ValueError):
        return 0.0
    return max(0.0, min(1.0, c))


def from_llm_payload(data: dict[str, Any]) -> ParsedReceipt:
    pii_detected = data.get("piiDetected")
    return ParsedReceipt(
        retailer=data.get("retailer") or None,
        amount=_amount(data.get("amount")),
        currency=(data.get("currency") or "USD").upper(),
        book_title=data.get("bookTitle") or None,
        purchase_date=parse_purchase_date(data.get("purchaseDate")),
        order_number=data.get("orderNumber") or None,
        format=normalize_format(data.get("format")),
        confidence=_confidence(data.get("overallConfidence")),
        requires_manual_review=bool(data.get("requiresManualReview", True)),
        manual_review_reason=data.get("manualReviewReason") or None,
        pii_detected=list(pii_detected) if isinstance(pii_detected, list) else [],
    )


class ReceiptParser:
    def __init__(self, llm: LlmClient, expected_title: str = "AI-Born"):
        self.llm = llm
        self.expected_title = expected_title

    def parse(self, redacted_text: str) -> ParsedReceipt:
        try:
            data = self.llm.complete_json(PROMPT.format(text=redacted_text, title=self.expected_title))
        except LlmError as e:
            logger.error("Receipt parsing failed: %s", e)
            return ParsedReceipt(
                confidence=0.0,
                requires_manual_review=True,
                manual_review_reason=f"Parsing error: {e}",
            )
        return from_llm_payload(data)
