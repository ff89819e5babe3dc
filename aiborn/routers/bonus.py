import logging

from email_validator import EmailNotValidError, validate_email
from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, Request, UploadFile
from sqlalchemy.orm import Session

from aiborn.core.errors import ValidationFailed
from aiborn.core.logging import mask_email
from aiborn.core.ratelimit import BONUS_CLAIM, enforce, get_client_ip
from aiborn.db.session import get_db
from aiborn.pipeline.context import PipelineContext, get_pipeline_context
from aiborn.pipeline.intake import accept_receipt, find_or_create_user, validate_format
from aiborn.pipeline.jobs import run_job
from aiborn.schemas.receipt import ReceiptAcceptedOut

router = APIRouter(prefix="/bonus", tags=["bonus"])
logger = logging.getLogger("aiborn.bonus")


def _clean_email(value: str) -> str:
    try:
        return validate_email(value.strip(), check_deliverability=False).normalized.lower()
    except EmailNotValidError:
        raise ValidationFailed("Invalid email address", code="INVALID_EMAIL")


@router.post("/claim", response_model=ReceiptAcceptedOut, status_code=202)
def claim_bonus_pack(
    request: Request,
    background: BackgroundTasks,
    email: str = Form(default=""),
    order_id: str = Form(default="", alias="orderId"),
    retailer: str = Form(default=""),
    format: str = Form(default=""),
    receipt: UploadFile | None = File(default=None),
    honeypot: str = Form(default=""),
    db: Session = Depends(get_db),
    ctx: PipelineContext = Depends(get_pipeline_context),
):
    """Public pre-order bonus form: no account needed, the pack goes to `email`."""
    ip = get_client_ip(request)
    enforce(ctx.limiter, f"bonus-claim:{ip}", BONUS_CLAIM, "Too many requests. Please try again later.")

    if honeypot:
        logger.info("Honeypot tripped from %s", ip)
        raise ValidationFailed("Invalid submission")

    missing = [
        name
        for name, value in (
            ("email", email),
            ("orderId", order_id),
            ("retailer", retailer),
            ("format", format),
        )
        if not value.strip()
    ]
    if receipt is None:
        missing.append("receipt")
    if missing:
        raise ValidationFailed(
            "Missing required fields", code="MISSING_FIELDS", extra={"fields": missing}
        )

    delivery_email = _clean_email(email)
    book_format = validate_format(format, required=True)
    order_id = order_id.strip()
    if not 5 <= len(order_id) <= 100:
        raise ValidationFailed(
            "Order ID must be between 5 and 100 characters", code="INVALID_ORDER_ID"
        )

    data = receipt.file.read(ctx.settings.MAX_UPLOAD_BYTES + 1)
    user = find_or_create_user(db, delivery_email)
    result = accept_receipt(
        db,
        ctx,
        user,
        data,
        delivery_email=delivery_email,
        retailer=retailer[:120],
        order_number=order_id,
        book_format=book_format,
        ip_address=ip,
    )
    background.add_task(run_job, ctx, result.receipt.id)
    logger.info("Bonus claim %s submitted for %s", result.claim.id, mask_email(delivery_email))

    return ReceiptAcceptedOut(
        receipt_id=result.receipt.id,
        claim_id=result.claim.id,
        status=result.receipt.status,
        message="Thanks! We're verifying your receipt and will email your bonus pack shortly.",
    )
