from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from aiborn.core.codes import RedemptionError, redeem_code, validate_code
from aiborn.core.deps import get_current_user
from aiborn.core.ratelimit import CODE_VALIDATION, enforce, get_client_ip
from aiborn.db.session import get_db
from aiborn.models.user import User
from aiborn.pipeline.context import PipelineContext, get_pipeline_context
from aiborn.schemas.code import CodeOut, CodeValidateIn, CodeValidateOut

router = APIRouter(prefix="/codes", tags=["codes"])


@router.post("/validate", response_model=CodeValidateOut)
def validate(
    payload: CodeValidateIn,
    request: Request,
    db: Session = Depends(get_db),
    ctx: PipelineContext = Depends(get_pipeline_context),
):
    # an unknown code is still a 200: the request itself was fine
    enforce(ctx.limiter, f"code-validate:{get_client_ip(request)}", CODE_VALIDATION,
            "Rate limit exceeded. Please try again later.")
    check = validate_code(db, payload.code)
    if not check.valid:
        return CodeValidateOut(valid=False, error=check.error)
    return CodeValidateOut(
        valid=True, type=check.code.type, redemptions_remaining=check.redemptions_remaining
    )


@router.post("/{code}/redeem", response_model=CodeOut)
def redeem(
    code: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        row = redeem_code(db, code, user.id)
    except RedemptionError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return CodeOut(
        id=row.id,
        code=row.code,
        type=row.type,
        status=row.status,
        redemption_count=row.redemption_count,
        max_redemptions=row.max_redemptions,
        valid_from=row.valid_from,
        valid_until=row.valid_until,
    )
