"""
Durable receipt-processing queue backed by the receipt_jobs table.

Upload handlers call `enqueue` inside their own transaction and schedule
`run_job` as a background task. Anything still queued or processing when the
process starts again is picked up by `recover_pending_jobs`.
"""
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from aiborn.models.job import ReceiptJob
from aiborn.pipeline.context import PipelineContext
from aiborn.pipeline.processor import ProcessingResult, ReceiptProcessor

logger = logging.getLogger("aiborn.jobs")

QUEUED = "queued"
PROCESSING = "processing"
DONE = "done"
ERROR = "error"


def enqueue(db: Session, receipt_id: str) -> ReceiptJob:
    """Idempotent: a receipt already in the queue is re-armed, not duplicated."""
    job = db.query(ReceiptJob).filter(ReceiptJob.receipt_id == receipt_id).first()
    if job is not None:
        job.status = QUEUED
        job.error = None
        db.commit()
        return job

    job = ReceiptJob(receipt_id=receipt_id, status=QUEUED)
    db.add(job)
    try:
        db.commit()
    except IntegrityError:
        # another request queued it first
        db.rollback()
        job = db.query(ReceiptJob).filter(ReceiptJob.receipt_id == receipt_id).one()
    db.refresh(job)
    return job


def run_job(ctx: PipelineContext, receipt_id: str) -> ProcessingResult | None:
    db = ctx.session_factory()
    try:
        job = db.query(ReceiptJob).filter(ReceiptJob.receipt_id == receipt_id).first()
        if job is None:
            logger.warning("No queued job for receipt %s", receipt_id)
            return None
        if job.status == DONE:
            return None

        job.status = PROCESSING
        job.attempts += 1
        job.started_at = ctx.now()
        db.commit()

        result = ReceiptProcessor(ctx).process(db, receipt_id)

        job = db.query(ReceiptJob).filter(ReceiptJob.receipt_id == receipt_id).one()
        job.finished_at = ctx.now()
        # a processing error is still acknowledged: the receipt sits in PENDING for an admin
        job.status = DONE if result.success or result.status is not None else ERROR
        job.error = (result.error or "")[:400] or None
        db.commit()
        logger.info("Job for receipt %s finished: %s", receipt_id, result.status)
        return result
    finally:
        db.close()


def recover_pending_jobs(ctx: PipelineContext) -> int:
    db = ctx.session_factory()
    try:
        receipt_ids = [
            rid
            for (rid,) in db.query(ReceiptJob.receipt_id)
            .filter(ReceiptJob.status.in_((QUEUED, PROCESSING)))
            .order_by(ReceiptJob.queued_at)
            .all()
        ]
    finally:
        db.close()

    if receipt_ids:
        logger.info("Recovering %d unfinished receipt jobs", len(receipt_ids))
    for receipt_id in receipt_ids:
        run_job(ctx, receipt_id)
    return len(receipt_ids)
