"""
Bonus-pack delivery for an approved claim.

One download token per asset, all emailed in a single message to the claim's
delivery address. The claim only becomes DELIVERED after the mailer reports
success; a failed send leaves it APPROVED for a manual resend.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from urllib.parse import quote

from sqlalchemy.orm import Session

from aiborn.core import tokens
from aiborn.core.errors import ConfigurationError
from aiborn.core.logging import mask_email
from aiborn.models.receipt import BonusClaim, BonusClaimStatus
from aiborn.pipeline import store
from aiborn.pipeline.assets import BONUS_ASSETS
from aiborn.pipeline.context import PipelineContext
from aiborn.pipeline.emails import bonus_pack_email

logger = logging.getLogger("aiborn.fulfillment")


@dataclass
class FulfillmentResult:
    success: bool
    claim_status: str
    delivered_at: datetime | None = None
    delivery_tracking_id: str | None = None
    error: str | None = None
    skipped: bool = False


def download_url(site_url: str, asset: str, token: str) -> str:
    return f"{site_url.rstrip('/')}/bonus/download/{asset}?token={quote(token, safe='')}"


class BonusFulfillment:
    def __init__(self, ctx: PipelineContext):
        self.ctx = ctx

    def download_urls(self, claim: BonusClaim) -> dict[str, str]:
        issued = self.ctx.clock()
        secret = self.ctx.settings.BONUS_TOKEN_SECRET
        return {
            key: download_url(
                self.ctx.settings.SITE_URL,
                key,
                tokens.mint_download_token(secret, claim.delivery_email, claim.id, key, now=issued),
            )
            for key in BONUS_ASSETS
        }

    def fulfill(self, db: Session, claim: BonusClaim, force: bool = False) -> FulfillmentResult:
        """
        Approve the claim and email the pack. `force` re-sends to an already
        DELIVERED claim (admin resend); without it that case is a no-op.
        """
        already_delivered = claim.status == BonusClaimStatus.DELIVERED
        if already_delivered and not force:
            logger.info("Claim %s already delivered; not re-sending", claim.id)
            return FulfillmentResult(
                success=True,
                claim_status=claim.status,
                delivered_at=claim.delivered_at,
                delivery_tracking_id=claim.delivery_tracking_id,
                skipped=True,
            )

        if not already_delivered:
            claim = store.update_claim(
                db, claim, status=BonusClaimStatus.APPROVED, processed_at=self.ctx.now()
            )

        try:
            urls = self.download_urls(claim)
        except ConfigurationError as e:
            logger.error("Cannot mint download links for claim %s: %s", claim.id, e.message)
            return FulfillmentResult(success=False, claim_status=claim.status, error=e.message)

        subject, html = bonus_pack_email(urls)
        sent = self.ctx.mailer.send(claim.delivery_email, subject, html)
        if not sent.success:
            logger.error(
                "Bonus pack email for claim %s to %s failed: %s",
                claim.id,
                mask_email(claim.delivery_email),
                sent.error,
            )
            return FulfillmentResult(success=False, claim_status=claim.status, error=sent.error)

        claim = store.update_claim(
            db,
            claim,
            status=BonusClaimStatus.DELIVERED,
            delivered_at=self.ctx.now(),
            delivery_tracking_id=sent.message_id,
        )
        logger.info("Bonus pack delivered for claim %s", claim.id)
        return FulfillmentResult(
            success=True,
            claim_status=claim.status,
            delivered_at=claim.delivered_at,
            delivery_tracking_id=claim.delivery_tracking_id,
        )
