import base64
import json

import pytest

from aiborn.core import tokens
from aiborn.core.errors import ConfigurationError

SECRET = "s3cret"
T0 = 1_750_000_000_000


def _flip(ch: str) -> str:
    return "B" if ch != "B" else "C"


def _b64json(segment: str) -> dict:
    return json.loads(base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4)))


class TestMintVerify:
    def test_round_trip_returns_payload(self):
        payload = {"email": "a@b.com", "claimId": "c1", "asset": "coi-diagnostic", "version": 1}
        token = tokens.mint(payload, SECRET, ttl_ms=1000, now=T0)

        check = tokens.verify(token, SECRET, now=T0 + 500)
        assert check.valid
        assert check.error is None
        for key, value in payload.items():
            assert check.payload[key] == value
        assert check.payload["timestamp"] == T0
        assert check.payload["expiresAt"] == T0 + 1000

    def test_compact_jws_shape(self):
        token = tokens.mint({"x": 1}, SECRET, ttl_ms=1000, now=T0)
        header, payload, signature = token.split(".")
        assert _b64json(header) == {"alg": "HS256", "typ": "JWT"}
        assert "=" not in token
        assert _b64json(payload)["x"] == 1
        assert signature

    def test_expiry_boundary(self):
        token = tokens.mint({"x": 1}, SECRET, ttl_ms=60_000, now=T0)

        assert tokens.verify(token, SECRET, now=T0 + 60_000 - 1).valid
        assert tokens.verify(token, SECRET, now=T0 + 60_000).valid

        late = tokens.verify(token, SECRET, now=T0 + 60_000 + 1)
        assert not late.valid
        assert late.error == tokens.EXPIRED
        assert late.payload["x"] == 1

    @pytest.mark.parametrize("segment", [0, 1])
    def test_tampering_header_or_payload_is_invalid(self, segment):
        token = tokens.mint({"email": "a@b.com", "asset": "coi-diagnostic"}, SECRET, 10_000, now=T0)
        parts = token.split(".")
        for i in range(len(parts[segment])):
            s = parts[segment]
            tampered = parts.copy()
            tampered[segment] = s[:i] + _flip(s[i]) + s[i + 1:]
            check = tokens.verify(".".join(tampered), SECRET, now=T0)
            assert not check.valid
            assert check.error == tokens.INVALID

    def test_wrong_secret_is_invalid(self):
        token = tokens.mint({"x": 1}, SECRET, 10_000, now=T0)
        assert tokens.verify(token, "other", now=T0).error == tokens.INVALID

    @pytest.mark.parametrize("bad", ["", "abc", "a.b", "a.b.c.d"])
    def test_wrong_segment_count_is_malformed(self, bad):
        assert tokens.verify(bad, SECRET, now=T0).error == tokens.MALFORMED

    def test_missing_secret(self):
        with pytest.raises(ConfigurationError) as exc:
            tokens.mint({"x": 1}, None, 1000)
        assert exc.value.code == tokens.MISSING_SECRET
        assert tokens.verify("a.b.c", "", now=T0).error == tokens.MISSING_SECRET


class TestPurposeTokens:
    def test_download_token_claims(self):
        token = tokens.mint_download_token(SECRET, "Reader@Example.com", "claim-1", "agent-charter-pack", now=T0)
        payload = tokens.verify(token, SECRET, now=T0).payload
        assert payload["email"] == "reader@example.com"
        assert payload["claimId"] == "claim-1"
        assert payload["asset"] == "agent-charter-pack"
        assert payload["version"] == 1
        assert payload["expiresAt"] - payload["timestamp"] == 24 * 60 * 60 * 1000

    def test_newsletter_ttls(self):
        confirm = tokens.verify(
            tokens.mint_newsletter_token(SECRET, "a@b.com", tokens.CONFIRMATION, now=T0), SECRET, now=T0
        ).payload
        unsub = tokens.verify(
            tokens.mint_newsletter_token(SECRET, "a@b.com", tokens.UNSUBSCRIBE, now=T0), SECRET, now=T0
        ).payload
        assert confirm["type"] == "confirmation"
        assert confirm["expiresAt"] - T0 == 7 * tokens.DAY_MS
        assert unsub["expiresAt"] - T0 == 100 * 365 * tokens.DAY_MS

    def test_unknown_newsletter_purpose(self):
        with pytest.raises(ValueError):
            tokens.mint_newsletter_token(SECRET, "a@b.com", "reset", now=T0)


class TestExtractBearer:
    def test_header_wins_over_query(self):
        assert tokens.extract_bearer("Bearer from-header", "from-query") == "from-header"

    def test_query_used_without_header(self):
        assert tokens.extract_bearer(None, "from-query") == "from-query"

    def test_nothing(self):
        assert tokens.extract_bearer(None, None) is None
