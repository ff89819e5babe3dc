"""VIP / partner access codes: generation, validation, redemption."""
import csv
import io
import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from aiborn.core.timeutil import as_utc, utcnow
from aiborn.models.code import Code, CodeRedemption

logger = logging.getLogger("aiborn.codes")

# no 0/O, 1/I
CODE_CHARS = "23456789ABCDEFGHJKLMNPQRSTUVWXYZ"
CODE_LENGTH = 6
MAX_BATCH = 10_000

_SEPARATORS = re.compile(r"[\s-]")


def normalize_code(value: str) -> str:
    return _SEPARATORS.sub("", value).upper()


def random_code(length: int = CODE_LENGTH) -> str:
    return "".join(secrets.choice(CODE_CHARS) for _ in range(length))


def unique_codes(db: Session, count: int, length: int = CODE_LENGTH) -> list[str]:
    batch: set[str] = set()
    while len(batch) < count:
        batch.add(random_code(length))

    # replace anything that already exists in the table
    while True:
        taken = {c for (c,) in db.query(Code.code).filter(Code.code.in_(batch)).all()}
        if not taken:
            return sorted(batch)
        batch -= taken
        while len(batch) < count:
            batch.add(random_code(length))


def generate_codes(
    db: Session,
    count: int,
    code_type: str,
    description: str | None = None,
    max_redemptions: int | None = None,
    valid_from: datetime | None = None,
    valid_until: datetime | None = None,
    created_by: str | None = None,
) -> list[Code]:
    if count <= 0 or count > MAX_BATCH:
        raise ValueError(f"count must be between 1 and {MAX_BATCH:,}")

    rows = [
        Code(
            code=code,
            type=code_type,
            description=description,
            status="ACTIVE",
            max_redemptions=max_redemptions,
            valid_from=valid_from or utcnow(),
            valid_until=valid_until,
            created_by=created_by,
        )
        for code in unique_codes(db, count)
    ]
    db.add_all(rows)
    db.commit()
    logger.info("Generated %d %s codes", len(rows), code_type)
    return rows


@dataclass
class CodeCheck:
    valid: bool
    code: Code | None = None
    error: str | None = None

    @property
    def redemptions_remaining(self) -> int | None:
        if self.code is None or self.code.max_redemptions is None:
            return None
        return self.code.max_redemptions - self.code.redemption_count


def validate_code(db: Session, value: str, now: datetime | None = None) -> CodeCheck:
    now = now or utcnow()
    code = db.query(Code).filter(Code.code == normalize_code(value)).first()
    if code is None:
        return CodeCheck(valid=False, error="Code not found")
    if code.status == "REVOKED":
        return CodeCheck(valid=False, code=code, error="Code has been revoked")
    if code.status == "EXPIRED":
        return CodeCheck(valid=False, code=code, error="Code has expired")
    if code.valid_from is not None and as_utc(code.valid_from) > now:
        return CodeCheck(valid=False, code=code, error="Code is not yet valid")
    if code.valid_until is not None and as_utc(code.valid_until) < now:
        return CodeCheck(valid=False, code=code, error="Code has expired")
    if code.max_redemptions is not None and code.redemption_count >= code.max_redemptions:
        return CodeCheck(valid=False, code=code, error="Code has reached maximum redemptions")
    return CodeCheck(valid=True, code=code)


class RedemptionError(Exception):
    pass


def redeem_code(db: Session, value: str, user_id: str) -> Code:
    check = validate_code(db, value)
    if not check.valid:
        raise RedemptionError(check.error)
    code = check.code

    db.add(CodeRedemption(code_id=code.id, user_id=user_id))
    code.redemption_count += 1
    if code.max_redemptions is not None and code.redemption_count >= code.max_redemptions:
        code.status = "REDEEMED"
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise RedemptionError("Code already redeemed by this account")
    db.refresh(code)
    logger.info("Code %s redeemed by %s (%d)", code.id, user_id, code.redemption_count)
    return code


def codes_to_csv(codes: list[Code]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(["Code", "Type", "Status", "Redemptions", "Valid From", "Valid Until"])
    for c in codes:
        valid_until = as_utc(c.valid_until)
        writer.writerow(
            [
                c.code,
                c.type,
                c.status,
                c.redemption_count,
                as_utc(c.valid_from).isoformat(),
                valid_until.isoformat() if valid_until else "Never",
            ]
        )
    return buf.getvalue()
