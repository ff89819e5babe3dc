"""Subjects and bodies for the emails the pipeline sends."""
from html import escape

from aiborn.models.receipt import ReceiptStatus
from aiborn.pipeline.assets import BONUS_ASSETS, FULL_PACK


def _layout(title: str, body: str) -> str:
    return f"""<!doctype html>
<html><body style="font-family:Arial,sans-serif;color:#111;max-width:600px;margin:auto">
<h2>{escape(title)}</h2>
{body}
<p style="color:#666;font-size:12px">AI-Born &middot; ai-born.org</p>
</body></html>"""


def bonus_pack_email(urls: dict[str, str]) -> tuple[str, str]:
    items = "".join(
        f'<li><a href="{escape(urls[key], quote=True)}">{escape(BONUS_ASSETS[key].display_name)}</a>'
        f" &ndash; {escape(BONUS_ASSETS[key].description)}</li>"
        for key in urls
        if key != FULL_PACK
    )
    body = (
        "<p>Thank you for pre-ordering <em>AI-Born</em>. Your receipt is verified and "
        "your bonus pack is ready.</p>"
        f'<p><a href="{escape(urls[FULL_PACK], quote=True)}"><strong>Download the full pack</strong></a></p>'
        f"<ul>{items}</ul>"
        "<p>Each link is personal and expires in 24 hours.</p>"
    )
    return "Your AI-Born bonus pack is ready", _layout("Your bonus pack", body)


_STATUS_COPY = {
    ReceiptStatus.VERIFIED: (
        "Your receipt has been verified",
        "Your receipt has been verified! Your bonus pack is on the way.",
    ),
    ReceiptStatus.PENDING: (
        "Your receipt is under review",
        "Your receipt is under review. We'll update you within 24 hours.",
    ),
    ReceiptStatus.REJECTED: (
        "We couldn't verify your receipt",
        "Unfortunately, we couldn't verify your receipt.",
    ),
}


def status_email(status: str, reason: str | None = None) -> tuple[str, str]:
    subject, line = _STATUS_COPY.get(status, _STATUS_COPY[ReceiptStatus.PENDING])
    body = f"<p>{escape(line)}</p>"
    if status == ReceiptStatus.REJECTED and reason:
        body += f"<p>Reason: {escape(reason)}</p>"
    return subject, _layout(subject, body)


def newsletter_confirm_email(confirm_url: str) -> tuple[str, str]:
    body = (
        "<p>Please confirm your subscription to AI-Born updates.</p>"
        f'<p><a href="{escape(confirm_url, quote=True)}">Confirm subscription</a></p>'
        "<p>This link expires in 7 days. If you didn't sign up, ignore this email.</p>"
    )
    return "Confirm your AI-Born subscription", _layout("Confirm your subscription", body)


def newsletter_welcome_email(unsubscribe_url: str) -> tuple[str, str]:
    body = (
        "<p>You're subscribed. We'll write when there's news about the book.</p>"
        f'<p style="font-size:12px"><a href="{escape(unsubscribe_url, quote=True)}">Unsubscribe</a></p>'
    )
    return "Welcome to AI-Born updates", _layout("Welcome", body)
