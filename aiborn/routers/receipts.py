from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, Request, UploadFile
from sqlalchemy.orm import Session

from aiborn.core.admin import is_admin
from aiborn.core.deps import get_current_user
from aiborn.core.ratelimit import RECEIPT_UPLOAD, enforce, get_client_ip
from aiborn.db.session import get_db
from aiborn.models.receipt import Receipt
from aiborn.models.user import User
from aiborn.pipeline.context import PipelineContext, get_pipeline_context
from aiborn.pipeline.intake import accept_receipt
from aiborn.pipeline.jobs import run_job
from aiborn.schemas.receipt import ReceiptAcceptedOut, ReceiptOut

router = APIRouter(prefix="/receipts", tags=["receipts"])


def receipt_out(r: Receipt) -> ReceiptOut:
    claim = r.bonus_claim
    return ReceiptOut(
        id=r.id,
        status=r.status,
        retailer=r.retailer,
        order_number=r.order_number,
        format=r.format,
        purchase_date=r.purchase_date,
        verified_at=r.verified_at,
        rejection_reason=r.rejection_reason,
        requires_manual_review=r.requires_manual_review,
        verification_score=r.verification_score,
        created_at=r.created_at,
        claim_status=claim.status if claim else None,
        delivered_at=claim.delivered_at if claim else None,
    )


@router.post("/upload", response_model=ReceiptAcceptedOut, status_code=202)
def upload_receipt(
    request: Request,
    background: BackgroundTasks,
    file: UploadFile = File(...),
    retailer: str | None = Form(default=None, max_length=120),
    order_number: str | None = Form(default=None, max_length=100),
    format: str | None = Form(default=None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    ctx: PipelineContext = Depends(get_pipeline_context),
):
    """
    Stores the receipt and queues verification. The result arrives by email;
    poll GET /receipts/{id} for status.
    """
    ip = get_client_ip(request)
    enforce(ctx.limiter, f"receipt-upload:{user.id}", RECEIPT_UPLOAD, "Too many uploads. Please try again later.")

    # read one byte past the limit so oversize files are detected without buffering everything
    data = file.file.read(ctx.settings.MAX_UPLOAD_BYTES + 1)
    result = accept_receipt(
        db,
        ctx,
        user,
        data,
        delivery_email=user.email,
        retailer=retailer,
        order_number=order_number,
        book_format=format,
        ip_address=ip,
    )
    background.add_task(run_job, ctx, result.receipt.id)

    return ReceiptAcceptedOut(
        receipt_id=result.receipt.id,
        claim_id=result.claim.id,
        status=result.receipt.status,
        message="Receipt uploaded. We'll email you once it has been verified.",
    )


@router.get("/{receipt_id}", response_model=ReceiptOut)
def get_receipt(
    receipt_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    r = db.get(Receipt, receipt_id)
    if not r or (r.user_id != user.id and not is_admin(user)):
        raise HTTPException(status_code=404, detail="Receipt not found")
    return receipt_out(r)
