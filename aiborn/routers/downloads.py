import logging
from pathlib import Path

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import FileResponse, JSONResponse
from sqlalchemy.orm import Session

from aiborn.core.logging import mask_email
from aiborn.core.ratelimit import get_client_ip
from aiborn.core.tokens import extract_bearer
from aiborn.db.session import get_db
from aiborn.models.download import BonusDownload
from aiborn.pipeline.context import PipelineContext, get_pipeline_context
from aiborn.pipeline.download_gate import DownloadGate

router = APIRouter(prefix="/bonus", tags=["downloads"])
logger = logging.getLogger("aiborn.downloads")

NO_CACHE = {
    "Cache-Control": "no-store, no-cache, must-revalidate, private",
    "Pragma": "no-cache",
    "Expires": "0",
}


@router.get("/download/{asset_key}")
def download_asset(
    asset_key: str,
    request: Request,
    token: str | None = Query(default=None),
    authorization: str | None = Header(default=None),
    db: Session = Depends(get_db),
    ctx: PipelineContext = Depends(get_pipeline_context),
):
    ip = get_client_ip(request)
    decision = DownloadGate(ctx).resolve(db, asset_key, extract_bearer(authorization, token), ip)
    if not decision.allowed:
        return JSONResponse(
            status_code=decision.status_code,
            content={"success": False, "error": decision.error, "message": decision.message},
            headers=decision.headers,
        )

    asset = decision.asset
    path = Path(ctx.settings.ASSETS_DIR) / asset.filename
    if not path.is_file():
        logger.error("Bonus asset file missing on disk: %s", path)
        return JSONResponse(
            status_code=404,
            content={"success": False, "error": "NOT_FOUND", "message": "File not available"},
        )

    db.add(BonusDownload(claim_id=decision.claim.id, asset=asset.key, email=decision.email, ip_address=ip))
    db.commit()
    logger.info("Serving %s to %s", asset.key, mask_email(decision.email))

    return FileResponse(
        path,
        media_type=asset.mime_type,
        filename=asset.download_name,
        headers={**NO_CACHE, **(decision.headers or {})},
    )
