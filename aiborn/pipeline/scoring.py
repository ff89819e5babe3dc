"""
Fraud rules, verification score and the status decision for a parsed receipt.

Everything here is a pure function of its arguments (the clock is passed in),
so thresholds can be tuned without touching the orchestration code.
"""
import math
from dataclasses import dataclass, field
from datetime import datetime

from aiborn.core.config import Settings
from aiborn.core.timeutil import as_utc, utcnow
from aiborn.models.receipt import ReceiptStatus
from aiborn.pipeline.types import ParsedReceipt

VERIFY_MIN_SCORE = 80
VERIFY_MIN_CONFIDENCE = 0.8
REVIEW_MIN_SCORE = 60

MODERATE_CONFIDENCE_REASON = "Moderate confidence - manual review recommended"
LOW_CONFIDENCE_REASON = "Low confidence score"


@dataclass(frozen=True)
class FraudPolicy:
    expected_title: str = "AI-Born"
    max_age_months: int = 6
    price_ranges: dict[str, tuple[float, float]] = field(
        default_factory=lambda: {
            "hardcover": (15.0, 100.0),
            "paperback": (10.0, 40.0),
            "ebook": (5.0, 30.0),
            "audiobook": (10.0, 50.0),
        }
    )
    known_retailers: tuple[str, ...] = (
        "Amazon",
        "Barnes & Noble",
        "Bookshop.org",
        "Apple Books",
        "Google Play",
        "Kobo",
        "Audible",
        "Waterstones",
    )

    @classmethod
    def from_settings(cls, s: Settings) -> "FraudPolicy":
        return cls(
            expected_title=s.EXPECTED_BOOK_TITLE,
            max_age_months=s.PURCHASE_MAX_AGE_MONTHS,
            price_ranges={
                "hardcover": tuple(s.HARDCOVER_PRICE_RANGE),
                "paperback": tuple(s.PAPERBACK_PRICE_RANGE),
                "ebook": tuple(s.EBOOK_PRICE_RANGE),
                "audiobook": tuple(s.AUDIOBOOK_PRICE_RANGE),
            },
            known_retailers=tuple(s.KNOWN_RETAILERS),
        )


@dataclass
class FraudCheck:
    is_fraudulent: bool
    reasons: list[str]


@dataclass
class Decision:
    status: str
    requires_manual_review: bool
    reason: str | None


def months_before(dt: datetime, months: int) -> datetime:
    year, month = dt.year, dt.month - months
    while month < 1:
        month += 12
        year -= 1
    # clamp e.g. Aug 31 - 6 months -> Feb 28/29
    for day in range(dt.day, 0, -1):
        try:
            return dt.replace(year=year, month=month, day=day)
        except ValueError:
            continue
    raise ValueError("unreachable")


def title_matches(title: str | None, expected: str) -> bool:
    return bool(title) and expected.lower() in title.lower()


def retailer_known(retailer: str, known: tuple[str, ...]) -> bool:
    r = retailer.lower()
    return any(k.lower() in r for k in known)


def check_fraud(
    parsed: ParsedReceipt, policy: FraudPolicy = FraudPolicy(), now: datetime | None = None
) -> FraudCheck:
    now = now or utcnow()
    reasons: list[str] = []

    if parsed.amount is not None and parsed.format in policy.price_ranges:
        low, high = policy.price_ranges[parsed.format]
        if parsed.amount < low or parsed.amount > high:
            reasons.append(
                f"{parsed.format.capitalize()} price outside expected range (${low:g}-${high:g})"
            )

    purchased = as_utc(parsed.purchase_date)
    if purchased is not None:
        if purchased > now:
            reasons.append("Purchase date is in the future")
        elif purchased < months_before(now, policy.max_age_months):
            reasons.append(f"Purchase date is more than {policy.max_age_months} months old")

    if not title_matches(parsed.book_title, policy.expected_title):
        reasons.append(f"Book title does not match {policy.expected_title}")

    if parsed.retailer and not retailer_known(parsed.retailer, policy.known_retailers):
        reasons.append(f"Unrecognized retailer: {parsed.retailer}")

    return FraudCheck(is_fraudulent=bool(reasons), reasons=reasons)


def score(
    parsed: ParsedReceipt, policy: FraudPolicy = FraudPolicy(), now: datetime | None = None
) -> int:
    """0-100. Confidence carries 40 points; each required field present adds its share."""
    now = now or utcnow()
    points = max(0.0, min(1.0, parsed.confidence)) * 40

    if title_matches(parsed.book_title, policy.expected_title):
        points += 20
    if parsed.retailer:
        points += 15
    if parsed.amount is not None and 0 < parsed.amount < 200:
        points += 15
    purchased = as_utc(parsed.purchase_date)
    if purchased is not None and purchased <= now:
        points += 10

    # half-up, not banker's rounding
    return max(0, min(100, math.floor(points + 0.5)))


def decide(
    is_fraudulent: bool,
    verification_score: int,
    confidence: float,
    fraud_reasons: list[str] | None = None,
    parser_reason: str | None = None,
) -> Decision:
    if is_fraudulent:
        return Decision(
            status=ReceiptStatus.REJECTED,
            requires_manual_review=False,
            reason="Fraud detected: " + ", ".join(fraud_reasons or []),
        )
    if verification_score >= VERIFY_MIN_SCORE and confidence >= VERIFY_MIN_CONFIDENCE:
        return Decision(status=ReceiptStatus.VERIFIED, requires_manual_review=False, reason=parser_reason)
    if verification_score >= REVIEW_MIN_SCORE:
        return Decision(
            status=ReceiptStatus.PENDING,
            requires_manual_review=True,
            reason=parser_reason or MODERATE_CONFIDENCE_REASON,
        )
    return Decision(
        status=ReceiptStatus.REJECTED,
        requires_manual_review=False,
        reason=parser_reason or LOW_CONFIDENCE_REASON,
    )
