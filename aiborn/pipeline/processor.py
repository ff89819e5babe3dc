"""
Receipt verification, one receipt at a time:

    read file -> OCR + PII redaction -> LLM parse -> fraud rules + score
    -> decision -> persist -> fulfil (if verified) -> notify owner

`process` never raises. OCR failure rejects the receipt outright; any other
unexpected error leaves it PENDING for an administrator and reports
success=False to the caller.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.orm import Session

from aiborn.core.logging import mask_email
from aiborn.models.receipt import BonusClaimStatus, Receipt, ReceiptStatus
from aiborn.models.user import User
from aiborn.pipeline import scoring, store
from aiborn.pipeline.context import PipelineContext
from aiborn.pipeline.emails import status_email
from aiborn.pipeline.fulfillment import BonusFulfillment, FulfillmentResult
from aiborn.pipeline.ocr import mime_type_from_ref
from aiborn.pipeline.types import ExtractionResult

logger = logging.getLogger("aiborn.processor")

OCR_FAILED_REASON = "OCR extraction failed"
PROCESSING_ERROR_REASON = "Processing error - requires manual review"


@dataclass
class ProcessingResult:
    success: bool
    receipt_id: str
    status: str | None = None
    retailer: str | None = None
    amount: float | None = None
    currency: str | None = None
    book_title: str | None = None
    purchase_date: datetime | None = None
    order_number: str | None = None
    format: str | None = None
    confidence: float = 0.0
    verification_score: int = 0
    requires_manual_review: bool = False
    manual_review_reason: str | None = None
    fraud_reasons: list[str] = field(default_factory=list)
    pii_detected: list[str] = field(default_factory=list)
    claim_status: str | None = None
    delivered_at: datetime | None = None
    delivery_tracking_id: str | None = None
    error: str | None = None

    def apply_fulfillment(self, result: FulfillmentResult | None) -> None:
        if result is None:
            return
        self.claim_status = result.claim_status
        self.delivered_at = result.delivered_at
        self.delivery_tracking_id = result.delivery_tracking_id


class ReceiptProcessor:
    def __init__(self, ctx: PipelineContext):
        self.ctx = ctx
        self.fulfillment = BonusFulfillment(ctx)

    def process(self, db: Session, receipt_id: str) -> ProcessingResult:
        try:
            return self._process(db, receipt_id)
        except Exception as e:
            logger.exception("Error processing receipt %s", receipt_id)
            db.rollback()
            try:
                store.update_receipt(
                    db,
                    receipt_id,
                    status=ReceiptStatus.PENDING,
                    rejection_reason=PROCESSING_ERROR_REASON,
                    requires_manual_review=True,
                )
            except Exception:
                logger.exception("Could not park receipt %s for manual review", receipt_id)
            return ProcessingResult(
                success=False,
                receipt_id=receipt_id,
                status=ReceiptStatus.PENDING,
                requires_manual_review=True,
                manual_review_reason=PROCESSING_ERROR_REASON,
                error=str(e),
            )

    def _process(self, db: Session, receipt_id: str) -> ProcessingResult:
        receipt = store.get_receipt(db, receipt_id)
        if receipt is None:
            return ProcessingResult(success=False, receipt_id=receipt_id, error="Receipt not found")
        if receipt.status == ReceiptStatus.DUPLICATE:
            return ProcessingResult(
                success=False, receipt_id=receipt_id, status=receipt.status, error="Duplicate receipt"
            )

        logger.info("Processing receipt %s", receipt_id)
        receipt = store.update_receipt(db, receipt_id, status=ReceiptStatus.PENDING)

        data = self.ctx.storage.read(receipt.file_url)
        extraction = self._extract(data, mime_type_from_ref(receipt.file_url))
        if not extraction.success or not extraction.redacted_text.strip():
            logger.warning("OCR failed for receipt %s: %s", receipt_id, extraction.error)
            store.update_receipt(
                db,
                receipt_id,
                status=ReceiptStatus.REJECTED,
                rejection_reason=OCR_FAILED_REASON,
                requires_manual_review=False,
            )
            self._reject_claim(db, receipt_id)
            claim = store.find_claim_by_receipt_id(db, receipt_id)
            return ProcessingResult(
                success=False,
                receipt_id=receipt_id,
                status=ReceiptStatus.REJECTED,
                manual_review_reason=OCR_FAILED_REASON,
                claim_status=claim.status if claim else None,
                error=extraction.error or OCR_FAILED_REASON,
            )

        logger.info("Parsing receipt %s", receipt_id)
        parsed = self.ctx.parser.parse(extraction.redacted_text)

        now = self.ctx.now()
        fraud = scoring.check_fraud(parsed, self.ctx.policy, now)
        verification_score = scoring.score(parsed, self.ctx.policy, now)
        decision = scoring.decide(
            fraud.is_fraudulent,
            verification_score,
            parsed.confidence,
            fraud_reasons=fraud.reasons,
            parser_reason=parsed.manual_review_reason,
        )
        # redaction that could not finish cleanly must not auto-verify
        if decision.status == ReceiptStatus.VERIFIED and extraction.requires_manual_review:
            decision = scoring.Decision(
                status=ReceiptStatus.PENDING,
                requires_manual_review=True,
                reason="PII redaction incomplete - manual review required",
            )
        logger.info(
            "Receipt %s decided %s score=%s confidence=%.2f",
            receipt_id,
            decision.status,
            verification_score,
            parsed.confidence,
        )

        verified = decision.status == ReceiptStatus.VERIFIED
        rejected = decision.status == ReceiptStatus.REJECTED
        store.update_receipt(
            db,
            receipt_id,
            clear=() if rejected else ("rejection_reason",),
            status=decision.status,
            retailer=parsed.retailer,
            purchase_date=parsed.purchase_date,
            format=parsed.format,
            verified_at=now if verified else None,
            rejection_reason=decision.reason if rejected else None,
            requires_manual_review=decision.requires_manual_review,
            verification_score=verification_score,
        )

        result = ProcessingResult(
            success=True,
            receipt_id=receipt_id,
            status=decision.status,
            retailer=parsed.retailer,
            amount=parsed.amount,
            currency=parsed.currency,
            book_title=parsed.book_title,
            purchase_date=parsed.purchase_date,
            order_number=parsed.order_number,
            format=parsed.format,
            confidence=parsed.confidence,
            verification_score=verification_score,
            requires_manual_review=decision.requires_manual_review,
            manual_review_reason=decision.reason,
            fraud_reasons=fraud.reasons,
            pii_detected=sorted(set(extraction.pii_detected) | set(parsed.pii_detected)),
        )

        if verified:
            result.apply_fulfillment(self._fulfill(db, receipt_id))
        else:
            if rejected:
                self._reject_claim(db, receipt_id)
            claim = store.find_claim_by_receipt_id(db, receipt_id)
            result.claim_status = claim.status if claim else None

        self._notify(db, store.get_receipt(db, receipt_id), decision.status, decision.reason)
        return result

    def _extract(self, data: bytes, mime_type: str) -> ExtractionResult:
        attempts = max(1, self.ctx.settings.OCR_MAX_ATTEMPTS)
        extraction = ExtractionResult(success=False)
        for attempt in range(1, attempts + 1):
            extraction = self.ctx.extractor.extract(data, mime_type)
            if extraction.success and extraction.redacted_text.strip():
                break
            if attempt < attempts:
                logger.info("OCR attempt %d/%d failed, retrying", attempt, attempts)
        return extraction

    def _fulfill(self, db: Session, receipt_id: str) -> FulfillmentResult | None:
        """Deliver the pack. A failure here is logged; the receipt stays VERIFIED."""
        claim = store.find_claim_by_receipt_id(db, receipt_id)
        if claim is None:
            logger.warning("No bonus claim found for receipt %s", receipt_id)
            return None
        try:
            return self.fulfillment.fulfill(db, claim)
        except Exception as e:
            logger.exception("Bonus pack fulfillment failed for receipt %s", receipt_id)
            db.rollback()
            claim = store.find_claim_by_receipt_id(db, receipt_id)
            return FulfillmentResult(
                success=False,
                claim_status=claim.status if claim else None,
                error=str(e),
            )

    def _reject_claim(self, db: Session, receipt_id: str, processed_by: str | None = None, notes: str | None = None) -> None:
        claim = store.find_claim_by_receipt_id(db, receipt_id)
        # a delivered pack stays delivered unless an administrator says otherwise
        if claim is None or (claim.status == BonusClaimStatus.DELIVERED and processed_by is None):
            return
        store.update_claim(
            db,
            claim,
            status=BonusClaimStatus.REJECTED,
            processed_at=self.ctx.now(),
            processed_by=processed_by,
            admin_notes=notes,
        )

    def _notify(self, db: Session, receipt: Receipt | None, status: str, reason: str | None) -> None:
        """Best effort: the decision is already stored whatever happens here."""
        if receipt is None:
            return
        try:
            user = db.get(User, receipt.user_id)
            if user is None:
                return
            subject, html = status_email(status, reason)
            sent = self.ctx.mailer.send(user.email, subject, html)
            if not sent.success:
                logger.warning("Status email to %s failed: %s", mask_email(user.email), sent.error)
        except Exception:
            logger.exception("Error sending status notification for receipt %s", receipt.id)

    # ---- administrator overrides ----

    def manually_approve(
        self, db: Session, receipt_id: str, admin_id: str, notes: str | None = None
    ) -> ProcessingResult:
        receipt = store.get_receipt(db, receipt_id)
        if receipt is None:
            raise LookupError(f"receipt {receipt_id} not found")

        now = self.ctx.now()
        receipt = store.update_receipt(
            db,
            receipt_id,
            clear=("rejection_reason",),
            status=ReceiptStatus.VERIFIED,
            verified_at=now,
            verified_by=admin_id,
            rejection_reason=None,
            requires_manual_review=False,
        )
        logger.info("Receipt %s manually approved by %s", receipt_id, admin_id)

        claim = store.find_claim_by_receipt_id(db, receipt_id)
        fulfillment = None
        if claim is not None:
            store.update_claim(db, claim, processed_by=admin_id, admin_notes=notes)
            fulfillment = self.fulfillment.fulfill(db, claim)

        result = _result_from_receipt(receipt, success=True)
        result.apply_fulfillment(fulfillment)
        self._notify(db, receipt, ReceiptStatus.VERIFIED, None)
        return result

    def manually_reject(self, db: Session, receipt_id: str, admin_id: str, reason: str) -> ProcessingResult:
        receipt = store.get_receipt(db, receipt_id)
        if receipt is None:
            raise LookupError(f"receipt {receipt_id} not found")

        receipt = store.update_receipt(
            db,
            receipt_id,
            status=ReceiptStatus.REJECTED,
            verified_by=admin_id,
            rejection_reason=reason,
            requires_manual_review=False,
        )
        logger.info("Receipt %s manually rejected by %s", receipt_id, admin_id)
        self._reject_claim(db, receipt_id, processed_by=admin_id, notes=reason)

        result = _result_from_receipt(receipt, success=True)
        claim = store.find_claim_by_receipt_id(db, receipt_id)
        result.claim_status = claim.status if claim else None
        self._notify(db, receipt, ReceiptStatus.REJECTED, reason)
        return result


def _result_from_receipt(receipt: Receipt, success: bool) -> ProcessingResult:
    return ProcessingResult(
        success=success,
        receipt_id=receipt.id,
        status=receipt.status,
        retailer=receipt.retailer,
        purchase_date=receipt.purchase_date,
        order_number=receipt.order_number,
        format=receipt.format,
        verification_score=receipt.verification_score or 0,
        requires_manual_review=receipt.requires_manual_review,
        manual_review_reason=receipt.rejection_reason,
    )
