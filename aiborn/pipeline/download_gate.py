"""
Authorisation for bonus-pack downloads.

`DownloadGate.resolve` runs the checks in a fixed order and returns the first
failure, so clients can tell an expired link from a broken one.
"""
import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from aiborn.core import tokens
from aiborn.core.logging import mask_email
from aiborn.core.ratelimit import DOWNLOAD
from aiborn.models.receipt import BonusClaim, BonusClaimStatus
from aiborn.pipeline.assets import BONUS_ASSETS, BonusAsset
from aiborn.pipeline.context import PipelineContext

logger = logging.getLogger("aiborn.downloads")

DOWNLOADABLE_CLAIM_STATUSES = (BonusClaimStatus.APPROVED, BonusClaimStatus.DELIVERED)

_MESSAGES = {
    "NOT_FOUND": "Unknown bonus asset",
    "MISSING_TOKEN": "Download token is required",
    tokens.MALFORMED: "This download link is broken. Please contact support.",
    tokens.INVALID: "This download link is broken. Please contact support.",
    tokens.EXPIRED: "This download link has expired. Please request a new one.",
    "ASSET_MISMATCH": "This link is not valid for the requested file",
    "CLAIM_NOT_FOUND": "Bonus claim not found",
    "CLAIM_NOT_APPROVED": "Bonus claim is not approved",
    "EMAIL_MISMATCH": "This link is not valid for this claim",
    "RATE_LIMIT_EXCEEDED": "Too many downloads. Please try again later.",
    "CONFIGURATION_ERROR": "Downloads are temporarily unavailable",
}


@dataclass
class GateDecision:
    allowed: bool
    status_code: int = 200
    error: str | None = None
    message: str | None = None
    asset: BonusAsset | None = None
    claim: BonusClaim | None = None
    email: str | None = None
    headers: dict[str, str] | None = None

    @classmethod
    def deny(cls, status_code: int, error: str, headers: dict[str, str] | None = None) -> "GateDecision":
        return cls(
            allowed=False,
            status_code=status_code,
            error=error,
            message=_MESSAGES.get(error, "Download not allowed"),
            headers=headers,
        )


class DownloadGate:
    def __init__(self, ctx: PipelineContext):
        self.ctx = ctx

    def resolve(self, db: Session, asset_key: str, token: str | None, client_ip: str) -> GateDecision:
        asset = BONUS_ASSETS.get(asset_key)
        if asset is None:
            return GateDecision.deny(404, "NOT_FOUND")
        if not token:
            return GateDecision.deny(403, "MISSING_TOKEN")

        check = tokens.verify(token, self.ctx.settings.BONUS_TOKEN_SECRET, now=self.ctx.clock())
        if not check.valid:
            if check.error == tokens.MISSING_SECRET:
                logger.error("BONUS_TOKEN_SECRET is not configured; refusing downloads")
                return GateDecision.deny(500, "CONFIGURATION_ERROR")
            if check.error == tokens.EXPIRED:
                return GateDecision.deny(410, tokens.EXPIRED)
            return GateDecision.deny(403, check.error or tokens.INVALID)

        payload = check.payload or {}
        if payload.get("asset") != asset_key:
            logger.warning(
                "Token for asset %r presented for %r", payload.get("asset"), asset_key
            )
            return GateDecision.deny(403, "ASSET_MISMATCH")

        claim_id = payload.get("claimId")
        claim = db.get(BonusClaim, claim_id) if isinstance(claim_id, str) else None
        if claim is None:
            return GateDecision.deny(404, "CLAIM_NOT_FOUND")
        if claim.status not in DOWNLOADABLE_CLAIM_STATUSES:
            return GateDecision.deny(403, "CLAIM_NOT_APPROVED")

        email = str(payload.get("email") or "").lower()
        if email != claim.delivery_email.lower():
            return GateDecision.deny(403, "EMAIL_MISMATCH")

        limit = self.ctx.limiter.hit(f"download:{email}:{client_ip}", DOWNLOAD)
        if not limit.allowed:
            logger.warning("Download rate limit hit for %s", mask_email(email))
            headers = limit.headers()
            headers["Retry-After"] = str(limit.retry_after_s(self.ctx.clock()))
            return GateDecision.deny(429, "RATE_LIMIT_EXCEEDED", headers=headers)

        return GateDecision(allowed=True, asset=asset, claim=claim, email=email, headers=limit.headers())
