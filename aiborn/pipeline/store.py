"""Persistence helpers the pipeline uses instead of ad-hoc queries."""
from sqlalchemy.orm import Session

from aiborn.models.receipt import BonusClaim, Receipt

RECEIPT_FIELDS = {
    "status",
    "retailer",
    "purchase_date",
    "format",
    "verified_at",
    "verified_by",
    "rejection_reason",
    "requires_manual_review",
    "verification_score",
}

CLAIM_FIELDS = {
    "status",
    "processed_at",
    "processed_by",
    "delivered_at",
    "delivery_tracking_id",
    "admin_notes",
}


def get_receipt(db: Session, receipt_id: str) -> Receipt | None:
    return db.query(Receipt).filter(Receipt.id == receipt_id).first()


def update_receipt(db: Session, receipt_id: str, **fields) -> Receipt:
    """None values leave the stored value alone, except for keys listed in `clear`."""
    clear = set(fields.pop("clear", ()))
    unknown = set(fields) - RECEIPT_FIELDS
    if unknown:
        raise ValueError(f"unknown receipt fields: {sorted(unknown)}")

    receipt = get_receipt(db, receipt_id)
    if receipt is None:
        raise LookupError(f"receipt {receipt_id} not found")
    for key, value in fields.items():
        if value is not None or key in clear:
            setattr(receipt, key, value)
    db.add(receipt)
    db.commit()
    db.refresh(receipt)
    return receipt


def find_claim_by_receipt_id(db: Session, receipt_id: str) -> BonusClaim | None:
    return db.query(BonusClaim).filter(BonusClaim.receipt_id == receipt_id).first()


def update_claim(db: Session, claim: BonusClaim, **fields) -> BonusClaim:
    unknown = set(fields) - CLAIM_FIELDS
    if unknown:
        raise ValueError(f"unknown claim fields: {sorted(unknown)}")
    for key, value in fields.items():
        if value is not None:
            setattr(claim, key, value)
    db.add(claim)
    db.commit()
    db.refresh(claim)
    return claim
