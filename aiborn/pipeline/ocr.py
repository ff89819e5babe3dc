"""
Receipt text extraction: file check -> OCR (AWS Textract) -> PII redaction.

`ReceiptTextExtractor.extract(data, mime_type)` reports unreadable receipts in
its result instead of raising, so the processor can treat OCR as a hard stop.
A missing Textract configuration raises `ConfigurationError`: that is a server
problem, not a bad receipt.
"""
import logging
from dataclasses import dataclass

from botocore.exceptions import BotoCoreError, ClientError

from aiborn.core.errors import ConfigurationError
from aiborn.pipeline import pii
from aiborn.pipeline.llm import LlmClient
from aiborn.pipeline.types import ExtractionResult

logger = logging.getLogger("aiborn.ocr")

ALLOWED_MIME_TYPES = ("image/jpeg", "image/png", "image/webp", "application/pdf")

EXTENSION_MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
    ".pdf": "application/pdf",
}

MIME_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "application/pdf": ".pdf",
}


def mime_type_from_ref(ref: str) -> str:
    """From the file extension only; content sniffing happens at upload time."""
    dot = ref.rfind(".")
    ext = ref[dot:].lower() if dot != -1 else ""
    return EXTENSION_MIME_TYPES.get(ext, "application/octet-stream")


def sniff_mime_type(data: bytes) -> str | None:
    if data.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    if data.startswith(b"%PDF-"):
        return "application/pdf"
    return None


@dataclass
class OcrResult:
    success: bool
    text: str = ""
    confidence: float = 0.0
    error: str | None = None


class TextractOcr:
    def __init__(self, region: str | None, client=None):
        self.region = region
        self._client = client

    @property
    def client(self):
        if self._client is None:
            import boto3

            self._client = boto3.client("textract", region_name=self.region)
        return self._client

    def extract_text(self, data: bytes) -> OcrResult:
        if self._client is None and not self.region:
            raise ConfigurationError("AWS_TEXTRACT_REGION is not configured", code="MISSING_API_KEY")
        try:
            resp = self.client.detect_document_text(Document={"Bytes": data})
        except (BotoCoreError, ClientError) as e:
            logger.warning("Textract call failed: %s", e)
            return OcrResult(success=False, error=str(e))

        lines = [b for b in resp.get("Blocks", []) if b.get("BlockType") == "LINE"]
        text = "\n".join(b.get("Text", "") for b in lines)
        confidence = (
            sum(b.get("Confidence", 0.0) for b in lines) / len(lines) / 100.0 if lines else 0.0
        )
        return OcrResult(success=bool(text.strip()), text=text, confidence=confidence,
                         error=None if text.strip() else "No text detected")


class ReceiptTextExtractor:
    def __init__(self, ocr: TextractOcr, llm: LlmClient | None = None):
        self.ocr = ocr
        self.llm = llm

    def extract(self, data: bytes, mime_type: str) -> ExtractionResult:
        if mime_type not in ALLOWED_MIME_TYPES:
            return ExtractionResult(success=False, error=f"Unsupported file type {mime_type}")

        ocr = self.ocr.extract_text(data)
        if not ocr.success or not ocr.text:
            return ExtractionResult(success=False, error=ocr.error or "OCR extraction failed")

        redaction = pii.redact(ocr.text, self.llm)
        return ExtractionResult(
            success=True,
            redacted_text=redaction.redacted_text,
            pii_detected=redaction.pii_detected,
            confidence=ocr.confidence,
            requires_manual_review=redaction.requires_manual_review,
        )
