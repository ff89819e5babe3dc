import logging
from dataclasses import asdict
from datetime import timedelta

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse
from sqlalchemy import func
from sqlalchemy.orm import Session

from aiborn.core.admin import require_admin
from aiborn.core.codes import codes_to_csv, generate_codes
from aiborn.core.timeutil import utcnow
from aiborn.db.session import get_db
from aiborn.models.code import CODE_STATUSES, CODE_TYPES, Code
from aiborn.models.download import BonusDownload
from aiborn.models.job import ReceiptJob
from aiborn.models.receipt import BonusClaim, BonusClaimStatus, Receipt, ReceiptStatus
from aiborn.models.user import User
from aiborn.pipeline import jobs
from aiborn.pipeline.context import PipelineContext, get_pipeline_context
from aiborn.pipeline.fulfillment import BonusFulfillment
from aiborn.pipeline.processor import ReceiptProcessor
from aiborn.schemas.admin import (
    ApproveIn,
    PipelineSummaryOut,
    RejectIn,
    ResendOut,
    ReviewItemOut,
    StatusCounts,
)
from aiborn.schemas.code import CodeGenerateIn, CodeGenerateOut, CodeOut
from aiborn.schemas.receipt import ProcessingOut

router = APIRouter(prefix="/admin", tags=["admin"])
logger = logging.getLogger("aiborn.admin")


def _code_out(c: Code) -> CodeOut:
    return CodeOut(
        id=c.id,
        code=c.code,
        type=c.type,
        status=c.status,
        redemption_count=c.redemption_count,
        max_redemptions=c.max_redemptions,
        valid_from=c.valid_from,
        valid_until=c.valid_until,
    )


# ---- receipt review ----


@router.get("/receipts", response_model=list[ReviewItemOut])
def list_receipts(
    status: str | None = Query(default=None),
    review_only: bool = Query(default=True),
    limit: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(get_db),
    _admin: User = Depends(require_admin),
):
    """Receipts waiting for a human by default; filter by status to see the rest."""
    q = db.query(Receipt, User).join(User, User.id == Receipt.user_id)
    if status:
        q = q.filter(Receipt.status == status.upper())
    elif review_only:
        q = q.filter(Receipt.status == ReceiptStatus.PENDING)
    rows = q.order_by(Receipt.created_at.asc()).limit(limit).all()

    out = []
    for r, u in rows:
        claim = r.bonus_claim
        out.append(
            ReviewItemOut(
                receipt_id=r.id,
                user_email=u.email,
                status=r.status,
                retailer=r.retailer,
                order_number=r.order_number,
                format=r.format,
                verification_score=r.verification_score,
                requires_manual_review=r.requires_manual_review,
                rejection_reason=r.rejection_reason,
                created_at=r.created_at,
                claim_id=claim.id if claim else None,
                claim_status=claim.status if claim else None,
                delivery_email=claim.delivery_email if claim else None,
            )
        )
    return out


@router.post("/receipts/{receipt_id}/approve", response_model=ProcessingOut)
def approve_receipt(
    receipt_id: str,
    payload: ApproveIn,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    ctx: PipelineContext = Depends(get_pipeline_context),
):
    try:
        result = ReceiptProcessor(ctx).manually_approve(db, receipt_id, admin.id, payload.notes)
    except LookupError:
        raise HTTPException(status_code=404, detail="Receipt not found")
    return ProcessingOut(**asdict(result))


@router.post("/receipts/{receipt_id}/reject", response_model=ProcessingOut)
def reject_receipt(
    receipt_id: str,
    payload: RejectIn,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    ctx: PipelineContext = Depends(get_pipeline_context),
):
    try:
        result = ReceiptProcessor(ctx).manually_reject(db, receipt_id, admin.id, payload.reason)
    except LookupError:
        raise HTTPException(status_code=404, detail="Receipt not found")
    return ProcessingOut(**asdict(result))


@router.post("/receipts/{receipt_id}/reprocess", status_code=202)
def reprocess_receipt(
    receipt_id: str,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    ctx: PipelineContext = Depends(get_pipeline_context),
):
    r = db.get(Receipt, receipt_id)
    if not r:
        raise HTTPException(status_code=404, detail="Receipt not found")
    if r.status == ReceiptStatus.DUPLICATE:
        raise HTTPException(status_code=409, detail="Duplicate receipts are never processed")

    jobs.enqueue(db, receipt_id)
    background.add_task(jobs.run_job, ctx, receipt_id)
    logger.info("Receipt %s requeued by %s", receipt_id, admin.id)
    return {"ok": True, "receipt_id": receipt_id}


@router.post("/claims/{claim_id}/resend", response_model=ResendOut)
def resend_bonus_pack(
    claim_id: str,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    ctx: PipelineContext = Depends(get_pipeline_context),
):
    claim = db.get(BonusClaim, claim_id)
    if not claim:
        raise HTTPException(status_code=404, detail="Claim not found")
    if claim.status not in (BonusClaimStatus.APPROVED, BonusClaimStatus.DELIVERED):
        raise HTTPException(status_code=409, detail="Claim is not approved")

    result = BonusFulfillment(ctx).fulfill(db, claim, force=True)
    logger.info("Bonus pack resend for claim %s by %s: %s", claim_id, admin.id, result.success)
    return ResendOut(
        success=result.success,
        claim_id=claim_id,
        claim_status=result.claim_status,
        delivered_at=result.delivered_at,
        delivery_tracking_id=result.delivery_tracking_id,
        error=result.error,
    )


@router.get("/metrics/summary", response_model=PipelineSummaryOut)
def pipeline_summary(
    days: int = Query(default=7, ge=1, le=365),
    db: Session = Depends(get_db),
    _admin: User = Depends(require_admin),
):
    end = utcnow()
    start = end - timedelta(days=days)

    by_status = dict(
        db.query(Receipt.status, func.count(Receipt.id))
        .filter(Receipt.created_at >= start, Receipt.created_at < end)
        .group_by(Receipt.status)
        .all()
    )
    manual_review = (
        db.query(func.count(Receipt.id))
        .filter(Receipt.status == ReceiptStatus.PENDING, Receipt.requires_manual_review.is_(True))
        .scalar()
        or 0
    )
    delivered = (
        db.query(func.count(BonusClaim.id))
        .filter(BonusClaim.delivered_at >= start, BonusClaim.delivered_at < end)
        .scalar()
        or 0
    )
    awaiting = (
        db.query(func.count(BonusClaim.id))
        .filter(BonusClaim.status == BonusClaimStatus.APPROVED)
        .scalar()
        or 0
    )
    downloads = (
        db.query(func.count(BonusDownload.id))
        .filter(BonusDownload.downloaded_at >= start, BonusDownload.downloaded_at < end)
        .scalar()
        or 0
    )
    unfinished = (
        db.query(func.count(ReceiptJob.id))
        .filter(ReceiptJob.status.in_((jobs.QUEUED, jobs.PROCESSING)))
        .scalar()
        or 0
    )

    return PipelineSummaryOut(
        start_utc=start,
        end_utc=end,
        receipts=StatusCounts(
            pending=by_status.get(ReceiptStatus.PENDING, 0),
            verified=by_status.get(ReceiptStatus.VERIFIED, 0),
            rejected=by_status.get(ReceiptStatus.REJECTED, 0),
            manual_review=int(manual_review),
        ),
        claims_delivered=int(delivered),
        claims_awaiting_delivery=int(awaiting),
        downloads=int(downloads),
        jobs_unfinished=int(unfinished),
    )


# ---- access codes ----


@router.post("/codes/generate", response_model=CodeGenerateOut, status_code=201)
def generate_access_codes(
    payload: CodeGenerateIn,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    if payload.valid_until and payload.valid_from and payload.valid_until <= payload.valid_from:
        raise HTTPException(status_code=400, detail="valid_until must be after valid_from")

    rows = generate_codes(
        db,
        payload.count,
        payload.type,
        description=payload.description,
        max_redemptions=payload.max_redemptions,
        valid_from=payload.valid_from,
        valid_until=payload.valid_until,
        created_by=admin.id,
    )
    return CodeGenerateOut(count=len(rows), codes=[_code_out(c) for c in rows])


@router.get("/codes")
def list_access_codes(
    type: str | None = Query(default=None),
    status: str | None = Query(default=None),
    format: str = Query(default="json", pattern="^(json|csv)$"),
    limit: int = Query(default=1000, ge=1, le=10_000),
    db: Session = Depends(get_db),
    _admin: User = Depends(require_admin),
):
    q = db.query(Code)
    if type:
        if type not in CODE_TYPES:
            raise HTTPException(status_code=400, detail="Unknown code type")
        q = q.filter(Code.type == type)
    if status:
        if status not in CODE_STATUSES:
            raise HTTPException(status_code=400, detail="Unknown code status")
        q = q.filter(Code.status == status)
    rows = q.order_by(Code.created_at.desc()).limit(limit).all()

    if format == "csv":
        return PlainTextResponse(
            codes_to_csv(rows),
            media_type="text/csv",
            headers={"Content-Disposition": 'attachment; filename="codes.csv"'},
        )
    return [_code_out(c) for c in rows]
