"""
Receipt intake shared by the authenticated upload and the public claim form.

Everything cheap is checked before the file is stored: size, real file type
(by signature), book format, content hash. Duplicates never get a row; the
unique index on file_hash settles races between concurrent uploads.
"""
import hashlib
import logging
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from aiborn.core.errors import AppError, ValidationFailed
from aiborn.core.logging import mask_email
from aiborn.core.storage import secure_filename
from aiborn.models.job import ReceiptJob
from aiborn.models.receipt import BOOK_FORMATS, BonusClaim, BonusClaimStatus, Receipt, ReceiptStatus
from aiborn.models.user import User
from aiborn.pipeline import jobs
from aiborn.pipeline.context import PipelineContext
from aiborn.pipeline.ocr import MIME_EXTENSIONS, sniff_mime_type

logger = logging.getLogger("aiborn.intake")

DUPLICATE_MESSAGE = "This receipt has already been submitted. Each receipt can only be used once."


class DuplicateReceipt(AppError):
    status_code = 409
    code = "DUPLICATE_RECEIPT"

    def __init__(self):
        super().__init__(DUPLICATE_MESSAGE, extra={"status": ReceiptStatus.DUPLICATE})


@dataclass
class IntakeResult:
    receipt: Receipt
    claim: BonusClaim
    job: ReceiptJob


def validate_file(data: bytes, max_bytes: int) -> str:
    if not data:
        raise ValidationFailed("Receipt file is empty", code="INVALID_FILE")
    if len(data) > max_bytes:
        raise ValidationFailed(
            f"File too large. Maximum size is {max_bytes // (1024 * 1024)}MB",
            code="FILE_TOO_LARGE",
            status_code=413,
        )
    mime_type = sniff_mime_type(data)
    if mime_type is None:
        raise ValidationFailed(
            "Invalid file type. Upload a JPEG, PNG, WebP or PDF.", code="INVALID_FILE_TYPE"
        )
    return mime_type


def validate_format(book_format: str | None, required: bool = False) -> str | None:
    if not book_format:
        if required:
            raise ValidationFailed("Format is required", code="MISSING_FIELDS")
        return None
    value = book_format.strip().lower()
    if value not in BOOK_FORMATS:
        raise ValidationFailed("Invalid book format", code="INVALID_FORMAT")
    return value


def file_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def find_or_create_user(db: Session, email: str) -> User:
    email = email.lower().strip()
    user = db.query(User).filter(User.email == email).first()
    if user is None:
        user = User(email=email)
        db.add(user)
        db.commit()
        db.refresh(user)
        logger.info("Created user %s for %s", user.id, mask_email(email))
    return user


def _discard(ctx: PipelineContext, file_url: str) -> None:
    try:
        ctx.storage.delete(file_url)
    except Exception:
        logger.warning("Could not remove orphaned upload %s", file_url, exc_info=True)


def accept_receipt(
    db: Session,
    ctx: PipelineContext,
    user: User,
    data: bytes,
    delivery_email: str,
    retailer: str | None = None,
    order_number: str | None = None,
    book_format: str | None = None,
    ip_address: str | None = None,
) -> IntakeResult:
    """Validate, store and queue one receipt. Raises DuplicateReceipt / ValidationFailed."""
    mime_type = validate_file(data, ctx.settings.MAX_UPLOAD_BYTES)
    book_format = validate_format(book_format)

    digest = file_hash(data)
    if db.query(Receipt.id).filter(Receipt.file_hash == digest).first() is not None:
        logger.info("Duplicate receipt upload from %s", mask_email(delivery_email))
        raise DuplicateReceipt()

    file_url = ctx.storage.save(data, secure_filename(user.id, MIME_EXTENSIONS[mime_type]))

    receipt = Receipt(
        user_id=user.id,
        retailer=retailer.strip() if retailer else None,
        order_number=order_number.strip() if order_number else None,
        format=book_format,
        status=ReceiptStatus.PENDING,
        file_url=file_url,
        file_hash=digest,
        ip_address=ip_address,
    )
    db.add(receipt)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        logger.info("Duplicate receipt lost the insert race (%s)", file_url)
        _discard(ctx, file_url)
        raise DuplicateReceipt()

    claim = BonusClaim(
        user_id=user.id,
        receipt_id=receipt.id,
        status=BonusClaimStatus.PENDING,
        delivery_email=delivery_email.lower().strip(),
    )
    db.add(claim)
    db.commit()
    db.refresh(receipt)
    db.refresh(claim)

    job = jobs.enqueue(db, receipt.id)
    logger.info("Receipt %s stored and queued", receipt.id)
    return IntakeResult(receipt=receipt, claim=claim, job=job)
