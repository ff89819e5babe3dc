from types import SimpleNamespace

import pytest
from botocore.exceptions import ClientError

from aiborn.core.errors import ConfigurationError
from aiborn.pipeline import pii
from aiborn.pipeline.llm import LlmClient, LlmError, extract_json_object
from aiborn.pipeline.ocr import ReceiptTextExtractor, TextractOcr, mime_type_from_ref, sniff_mime_type
from aiborn.pipeline.parser import ReceiptParser, from_llm_payload, normalize_format, parse_purchase_date


class FakeLlm:
    def __init__(self, reply=None, error=None):
        self.reply = reply or {}
        self.error = error
        self.prompts = []

    def complete_json(self, prompt, max_tokens=2000):
        self.prompts.append(prompt)
        if self.error:
            raise self.error
        return self.reply


class FakeTextract:
    def __init__(self, blocks=None, error=None):
        self.blocks = blocks or []
        self.error = error

    def detect_document_text(self, Document):
        if self.error:
            raise self.error
        return {"Blocks": self.blocks}


def line(text, confidence=90.0):
    return {"BlockType": "LINE", "Text": text, "Confidence": confidence}


class TestPatternRedaction:
    def test_structured_pii_is_removed(self):
        text = (
            "Ship to: 221 Baker Street\n"
            "Contact jane.doe@example.com or (555) 123-4567\n"
            "Card 4111 1111 1111 1111\n"
            "AI-Born hardcover $28.99"
        )
        result = pii.redact_patterns(text)
        assert "jane.doe@example.com" not in result.redacted_text
        assert "4111" not in result.redacted_text
        assert "123-4567" not in result.redacted_text
        assert "Baker Street" not in result.redacted_text
        assert "AI-Born hardcover $28.99" in result.redacted_text
        assert {"email", "creditCard", "phone", "address"} <= set(result.pii_detected)

    def test_purchase_details_survive(self):
        text = "Amazon.com order placed 2025-08-01 total $28.99 AI-Born hardcover"
        assert pii.redact_patterns(text).redacted_text == text


class TestLayeredRedaction:
    def test_without_llm_flags_manual_review(self):
        result = pii.redact("hello", llm=None)
        assert result.requires_manual_review

    def test_llm_items_redacted(self):
        llm = FakeLlm({"items": [{"type": "name", "value": "Jane Doe"}]})
        result = pii.redact("Sold to Jane Doe\nAI-Born", llm)
        assert result.redacted_text == "Sold to [REDACTED]\nAI-Born"
        assert "name" in result.pii_detected
        assert not result.requires_manual_review

    def test_llm_failure_flags_review(self):
        result = pii.redact("Sold to Jane Doe", FakeLlm(error=LlmError("timeout")))
        assert result.requires_manual_review
        assert "Jane Doe" in result.redacted_text


class TestLlmClient:
    def test_missing_key_is_configuration_error(self):
        with pytest.raises(ConfigurationError) as exc:
            LlmClient(api_key=None, model="gpt-4o-mini").complete_json("hi")
        assert exc.value.code == "MISSING_API_KEY"

    def test_extract_json_object_from_chatty_reply(self):
        assert extract_json_object('Sure! {"a": 1} hope that helps') == {"a": 1}

    def test_extract_json_object_rejects_garbage(self):
        with pytest.raises(LlmError):
            extract_json_object("no json here")

    def test_complete_json_uses_chat_completions(self):
        calls = []

        def create(**kwargs):
            calls.append(kwargs)
            return SimpleNamespace(
                choices=[SimpleNamespace(message=SimpleNamespace(content='{"ok": true}'))]
            )

        fake = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
        llm = LlmClient(api_key="k", model="m", client=fake)
        assert llm.complete_json("prompt") == {"ok": True}
        assert calls[0]["temperature"] == 0
        assert calls[0]["response_format"] == {"type": "json_object"}


class TestParser:
    def test_payload_mapping(self):
        parsed = from_llm_payload(
            {
                "retailer": "Amazon",
                "amount": "$28.99",
                "currency": "usd",
                "bookTitle": "AI-Born",
                "purchaseDate": "2020-01-15",
                "orderNumber": "112-1",
                "format": "Kindle Edition",
                "piiDetected": ["name"],
                "requiresManualReview": False,
                "overallConfidence": 1.7,
            }
        )
        assert parsed.amount == 28.99
        assert parsed.currency == "USD"
        assert parsed.format == "ebook"
        assert parsed.purchase_date.year == 2020
        assert parsed.confidence == 1.0
        assert parsed.pii_detected == ["name"]
        assert not parsed.requires_manual_review

    def test_defaults(self):
        parsed = from_llm_payload({})
        assert parsed.currency == "USD"
        assert parsed.confidence == 0.0
        assert parsed.requires_manual_review

    @pytest.mark.parametrize(
        "raw,expected",
        [("Hardcover", "hardcover"), ("paperback", "paperback"), ("Audible audiobook", "audiobook"), ("vinyl", None)],
    )
    def test_normalize_format(self, raw, expected):
        assert normalize_format(raw) == expected

    def test_future_or_bad_dates_dropped(self):
        assert parse_purchase_date("2999-01-01") is None
        assert parse_purchase_date("last tuesday") is None

    def test_llm_error_becomes_zero_confidence(self):
        parsed = ReceiptParser(FakeLlm(error=LlmError("rate limited"))).parse("text")
        assert parsed.confidence == 0.0
        assert parsed.requires_manual_review
        assert parsed.manual_review_reason.startswith("Parsing error")

    def test_prompt_mentions_expected_title(self):
        llm = FakeLlm({"overallConfidence": 0.9})
        ReceiptParser(llm, expected_title="AI-Born").parse("RECEIPT")
        assert '"AI-Born"' in llm.prompts[0]
        assert "RECEIPT" in llm.prompts[0]


class TestOcr:
    def test_sniff(self):
        assert sniff_mime_type(b"\xff\xd8\xff\xe0rest") == "image/jpeg"
        assert sniff_mime_type(b"%PDF-1.7") == "application/pdf"
        assert sniff_mime_type(b"RIFF\x00\x00\x00\x00WEBPVP8") == "image/webp"
        assert sniff_mime_type(b"GIF89a") is None

    def test_mime_from_ref(self):
        assert mime_type_from_ref("/uploads/receipts/abc.PNG") == "image/png"
        assert mime_type_from_ref("s3://b/receipts/abc") == "application/octet-stream"

    def test_textract_lines_and_confidence(self):
        ocr = TextractOcr(region=None, client=FakeTextract([line("AMAZON", 90.0), line("AI-Born", 80.0)]))
        result = ocr.extract_text(b"img")
        assert result.success
        assert result.text == "AMAZON\nAI-Born"
        assert result.confidence == pytest.approx(0.85)

    def test_textract_not_configured(self):
        with pytest.raises(ConfigurationError) as exc:
            TextractOcr(region=None).extract_text(b"img")
        assert exc.value.code == "MISSING_API_KEY"

    def test_textract_error_is_a_failed_result(self):
        err = ClientError({"Error": {"Code": "Throttling", "Message": "slow down"}}, "DetectDocumentText")
        result = TextractOcr(region="us-east-1", client=FakeTextract(error=err)).extract_text(b"img")
        assert not result.success
        assert "Throttling" in result.error

    def test_extractor_redacts(self):
        ocr = TextractOcr(region=None, client=FakeTextract([line("Email jane@example.com"), line("AI-Born")]))
        result = ReceiptTextExtractor(ocr, FakeLlm({"items": []})).extract(b"img", "image/png")
        assert result.success
        assert "jane@example.com" not in result.redacted_text
        assert result.pii_detected == ["email"]
        assert not result.requires_manual_review

    def test_extractor_rejects_unsupported_type(self):
        ocr = TextractOcr(region=None, client=FakeTextract([line("x")]))
        assert not ReceiptTextExtractor(ocr).extract(b"x", "image/gif").success

    def test_extractor_empty_text_fails(self):
        ocr = TextractOcr(region=None, client=FakeTextract([]))
        result = ReceiptTextExtractor(ocr).extract(b"x", "image/png")
        assert not result.success
