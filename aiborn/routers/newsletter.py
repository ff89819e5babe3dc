"""Newsletter double opt-in: subscribe -> emailed confirmation link -> confirmed."""
import logging
from urllib.parse import quote

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from aiborn.core import tokens
from aiborn.core.errors import ValidationFailed
from aiborn.core.logging import mask_email
from aiborn.core.ratelimit import EMAIL_CAPTURE, enforce, get_client_ip
from aiborn.db.session import get_db
from aiborn.models.newsletter import NewsletterSubscriber
from aiborn.pipeline.context import PipelineContext, get_pipeline_context
from aiborn.pipeline.emails import newsletter_confirm_email, newsletter_welcome_email
from aiborn.schemas.newsletter import SubscribeIn, SubscribeOut

router = APIRouter(prefix="/newsletter", tags=["newsletter"])
logger = logging.getLogger("aiborn.newsletter")

PENDING = "pending"
CONFIRMED = "confirmed"
UNSUBSCRIBED = "unsubscribed"


def _link(ctx: PipelineContext, action: str, token: str) -> str:
    return f"{ctx.settings.SITE_URL.rstrip('/')}/newsletter/{action}?token={quote(token, safe='')}"


def _result_page(ctx: PipelineContext, status: str) -> RedirectResponse:
    return RedirectResponse(f"{ctx.settings.SITE_URL.rstrip('/')}/newsletter?status={status}", status_code=303)


def _subscriber_from_token(db: Session, ctx: PipelineContext, token: str, purpose: str):
    """(subscriber, None) when the link is good, else (None, status for the result page)."""
    check = tokens.verify(token, ctx.settings.BONUS_TOKEN_SECRET, now=ctx.clock())
    if not check.valid:
        return None, "expired" if check.error == tokens.EXPIRED else "invalid"
    payload = check.payload or {}
    if payload.get("type") != purpose:
        return None, "invalid"
    sub = (
        db.query(NewsletterSubscriber)
        .filter(NewsletterSubscriber.email == str(payload.get("email", "")).lower())
        .first()
    )
    if sub is None:
        return None, "invalid"
    return sub, None


@router.post("/subscribe", response_model=SubscribeOut)
def subscribe(
    payload: SubscribeIn,
    request: Request,
    db: Session = Depends(get_db),
    ctx: PipelineContext = Depends(get_pipeline_context),
):
    ip = get_client_ip(request)
    enforce(ctx.limiter, f"email-capture:{ip}", EMAIL_CAPTURE, "Too many requests. Please try again later.")
    if payload.honeypot:
        raise ValidationFailed("Invalid submission")

    email = payload.email.lower().strip()
    sub = db.query(NewsletterSubscriber).filter(NewsletterSubscriber.email == email).first()
    if sub is not None and sub.status == CONFIRMED:
        return SubscribeOut(message="You're already subscribed.")

    if sub is None:
        sub = NewsletterSubscriber(email=email, name=payload.name, source=payload.source)
        db.add(sub)
    sub.status = PENDING
    sub.unsubscribed_at = None
    db.commit()

    token = tokens.mint_newsletter_token(
        ctx.settings.BONUS_TOKEN_SECRET, email, tokens.CONFIRMATION, now=ctx.clock()
    )
    subject, html = newsletter_confirm_email(_link(ctx, "confirm", token))
    sent = ctx.mailer.send(email, subject, html)
    if not sent.success:
        logger.error("Confirmation email to %s failed: %s", mask_email(email), sent.error)

    return SubscribeOut(message="Check your inbox to confirm your subscription.")


@router.get("/confirm")
def confirm(
    token: str = Query(...),
    db: Session = Depends(get_db),
    ctx: PipelineContext = Depends(get_pipeline_context),
):
    sub, failure = _subscriber_from_token(db, ctx, token, tokens.CONFIRMATION)
    if failure:
        return _result_page(ctx, failure)

    if sub.status != CONFIRMED:
        sub.status = CONFIRMED
        sub.confirmed_at = ctx.now()
        sub.unsubscribed_at = None
        db.commit()

        unsubscribe = tokens.mint_newsletter_token(
            ctx.settings.BONUS_TOKEN_SECRET, sub.email, tokens.UNSUBSCRIBE, now=ctx.clock()
        )
        subject, html = newsletter_welcome_email(_link(ctx, "unsubscribe", unsubscribe))
        ctx.mailer.send(sub.email, subject, html)
        logger.info("Newsletter subscription confirmed for %s", mask_email(sub.email))

    return _result_page(ctx, CONFIRMED)


@router.get("/unsubscribe")
def unsubscribe(
    token: str = Query(...),
    db: Session = Depends(get_db),
    ctx: PipelineContext = Depends(get_pipeline_context),
):
    sub, failure = _subscriber_from_token(db, ctx, token, tokens.UNSUBSCRIBE)
    if failure:
        return _result_page(ctx, failure)

    if sub.status != UNSUBSCRIBED:
        sub.status = UNSUBSCRIBED
        sub.unsubscribed_at = ctx.now()
        db.commit()
        logger.info("Newsletter unsubscribe for %s", mask_email(sub.email))

    return _result_page(ctx, UNSUBSCRIBED)
