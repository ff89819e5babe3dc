"""
PII redaction for OCR text, in three layers:

1. regex patterns for structured PII (emails, cards, SSNs, phones, ...)
2. an LLM pass for contextual PII the patterns miss (names, free-form addresses)
3. a manual-review flag when layer 2 could not run
"""
import logging
import re
from dataclasses import dataclass, field

from aiborn.pipeline.llm import LlmClient, LlmError

logger = logging.getLogger("aiborn.pii")

REDACTED = "[REDACTED]"

# order matters: card numbers before phone numbers, SSN before zip codes
PII_PATTERNS: dict[str, re.Pattern] = {
    "email": re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
    "creditCard": re.compile(r"\b(?:\d{4}[-\s]?){3}\d{4}\b"),
    "ssn": re.compile(r"\b\d{3}-\d{2}-\d{4}\b"),
    "phone": re.compile(r"(?:\+\d{1,3}[-.\s]?)?\(?\b\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}\b"),
    "ipAddress": re.compile(r"\b(?:\d{1,3}\.){3}\d{1,3}\b"),
    "address": re.compile(
        r"\b\d+\s+[\w\s]+?(?:Street|St|Avenue|Ave|Road|Rd|Boulevard|Blvd|Lane|Ln|Drive|Dr|Court|Ct|Circle|Cir)\b",
        re.IGNORECASE,
    ),
    "zipCode": re.compile(r"\b\d{5}(?:-\d{4})\b"),
}


@dataclass
class RedactionResult:
    redacted_text: str
    pii_detected: list[str] = field(default_factory=list)
    redaction_count: int = 0
    requires_manual_review: bool = False


def redact_patterns(text: str) -> RedactionResult:
    redacted = text
    found: list[str] = []
    count = 0
    for kind, pattern in PII_PATTERNS.items():
        redacted, n = pattern.subn(REDACTED, redacted)
        if n:
            found.append(kind)
            count += n
    return RedactionResult(redacted_text=redacted, pii_detected=found, redaction_count=count)


PII_PROMPT = """You are a privacy filter for purchase receipts.
List every piece of personally identifiable information that remains in the text below:
customer names, street addresses, phone numbers, email addresses, account or loyalty numbers.
Do NOT list retailer names, book titles, prices, dates or order numbers.

TEXT:
{text}

Respond ONLY with JSON: {{"items": [{{"type": string, "value": string}}]}}"""


def detect_with_llm(llm: LlmClient, text: str) -> list[tuple[str, str]]:
    data = llm.complete_json(PII_PROMPT.format(text=text), max_tokens=800)
    items = data.get("items") or []
    out = []
    for item in items:
        if isinstance(item, dict) and item.get("value"):
            out.append((str(item.get("type") or "other"), str(item["value"])))
    return out


def redact(text: str, llm: LlmClient | None = None) -> RedactionResult:
    result = redact_patterns(text)
    if llm is None:
        result.requires_manual_review = True
        return result

    try:
        items = detect_with_llm(llm, result.redacted_text)
    except LlmError as e:
        logger.warning("LLM PII pass failed, flagging for manual review: %s", e)
        result.requires_manual_review = True
        return result

    for kind, value in items:
        if value in result.redacted_text:
            result.redacted_text = result.redacted_text.replace(value, REDACTED)
            result.redaction_count += 1
            if kind not in result.pii_detected:
                result.pii_detected.append(kind)
    return result
