"""
Compact signed tokens for emailed links (bonus-pack downloads, newsletter opt-in).

Format is a JWS in compact serialisation: base64url(header).base64url(payload).signature,
HMAC-SHA256 over the first two segments. Payload timestamps are integer milliseconds
since epoch: ``timestamp`` (issued-at) and ``expiresAt``.
Tokens are never stored; the only way a token dies is expiry.
"""
import binascii
import json
import logging
import re
from dataclasses import dataclass
from typing import Any

from jose import jwk, jws
from jose.utils import base64url_decode

from aiborn.core.errors import ConfigurationError
from aiborn.core.timeutil import now_ms

logger = logging.getLogger("aiborn.tokens")

ALGO = "HS256"

MISSING_SECRET = "MISSING_SECRET"
MALFORMED = "MALFORMED"
INVALID = "INVALID"
EXPIRED = "EXPIRED"

HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS

DOWNLOAD_TOKEN_TTL_MS = 24 * HOUR_MS
DOWNLOAD_TOKEN_VERSION = 1
NEWSLETTER_CONFIRM_TTL_MS = 7 * DAY_MS
# unsubscribe links must keep working for as long as the email exists
NEWSLETTER_UNSUBSCRIBE_TTL_MS = 100 * 365 * DAY_MS


@dataclass
class TokenVerification:
    valid: bool
    payload: dict[str, Any] | None = None
    error: str | None = None


def mint(payload: dict[str, Any], secret: str | None, ttl_ms: int, now: int | None = None) -> str:
    if not secret:
        raise ConfigurationError("Token signing secret is not configured", code=MISSING_SECRET)
    issued = now_ms() if now is None else now
    claims = dict(payload)
    claims["timestamp"] = issued
    claims["expiresAt"] = issued + ttl_ms
    return jws.sign(claims, secret, algorithm=ALGO)


def verify(token: str, secret: str | None, now: int | None = None) -> TokenVerification:
    if not secret:
        return TokenVerification(valid=False, error=MISSING_SECRET)

    parts = token.split(".")
    if len(parts) != 3:
        return TokenVerification(valid=False, error=MALFORMED)

    encoded_header, encoded_payload, signature = parts
    signing_input = f"{encoded_header}.{encoded_payload}".encode("ascii", "replace")

    try:
        key = jwk.construct(secret, algorithm=ALGO)
        signature_ok = key.verify(signing_input, base64url_decode(signature.encode("ascii")))
    except (binascii.Error, ValueError, UnicodeEncodeError):
        signature_ok = False
    if not signature_ok:
        return TokenVerification(valid=False, error=INVALID)

    try:
        payload = json.loads(base64url_decode(encoded_payload.encode("ascii")))
    except (binascii.Error, ValueError) as e:
        logger.warning("Signed token with undecodable payload: %s", e)
        return TokenVerification(valid=False, error=MALFORMED)
    if not isinstance(payload, dict) or not isinstance(payload.get("expiresAt"), int):
        return TokenVerification(valid=False, error=MALFORMED)

    current = now_ms() if now is None else now
    if payload["expiresAt"] < current:
        # payload still returned so callers can log who/what expired
        return TokenVerification(valid=False, payload=payload, error=EXPIRED)

    return TokenVerification(valid=True, payload=payload)


_BEARER = re.compile(r"^Bearer (.+)$")


def extract_bearer(authorization: str | None, query_token: str | None) -> str | None:
    # Authorization header wins; the query parameter only counts without one
    if authorization:
        m = _BEARER.match(authorization)
        if m:
            return m.group(1)
    return query_token or None


# ---- bonus-pack download tokens ----


def mint_download_token(
    secret: str | None, email: str, claim_id: str, asset: str, now: int | None = None
) -> str:
    payload = {
        "email": email.lower(),
        "claimId": claim_id,
        "asset": asset,
        "version": DOWNLOAD_TOKEN_VERSION,
    }
    return mint(payload, secret, DOWNLOAD_TOKEN_TTL_MS, now=now)


# ---- newsletter tokens ----

CONFIRMATION = "confirmation"
UNSUBSCRIBE = "unsubscribe"


def mint_newsletter_token(secret: str | None, email: str, purpose: str, now: int | None = None) -> str:
    if purpose not in (CONFIRMATION, UNSUBSCRIBE):
        raise ValueError(f"unknown newsletter token purpose {purpose!r}")
    ttl = NEWSLETTER_CONFIRM_TTL_MS if purpose == CONFIRMATION else NEWSLETTER_UNSUBSCRIBE_TTL_MS
    return mint({"email": email.lower(), "type": purpose}, secret, ttl, now=now)
