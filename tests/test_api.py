import os

import pytest

from aiborn.models.job import ReceiptJob
from aiborn.models.receipt import BonusClaim, BonusClaimStatus, Receipt, ReceiptStatus
from aiborn.models.user import User
from aiborn.pipeline.intake import DuplicateReceipt, accept_receipt, file_hash

from conftest import FakeParser, good_receipt, png_bytes


def _upload(client, tag="a", **form):
    return client.post(
        "/receipts/upload",
        files={"file": ("receipt.png", png_bytes(tag), "image/png")},
        data={"retailer": "Amazon", "order_number": "112-7654321-0000000", "format": "hardcover", **form},
    )


def _claim_form(client, tag="a", **overrides):
    data = {
        "email": "Gift@Example.com",
        "orderId": "112-7654321-0000000",
        "retailer": "Amazon",
        "format": "hardcover",
    }
    data.update(overrides)
    files = {"receipt": ("receipt.png", png_bytes(tag), "image/png")}
    return client.post("/bonus/claim", data=data, files=files)


def test_health(client):
    assert client.get("/health").json() == {"ok": True}


class TestUpload:
    def test_requires_login(self, client):
        assert _upload(client).status_code == 401

    def test_accepts_and_verifies_in_background(self, client, db, login_as, user, mailer):
        login_as(user)
        resp = _upload(client)

        assert resp.status_code == 202
        body = resp.json()
        assert body["success"] is True
        assert body["status"] == ReceiptStatus.PENDING

        # TestClient runs background tasks before returning
        db.expire_all()
        receipt = db.get(Receipt, body["receipt_id"])
        assert receipt.status == ReceiptStatus.VERIFIED
        assert receipt.user_id == user.id
        assert receipt.file_url.endswith(".png")
        claim = db.get(BonusClaim, body["claim_id"])
        assert claim.status == BonusClaimStatus.DELIVERED
        assert claim.delivery_email == user.email
        assert db.query(ReceiptJob).one().status == "done"
        assert mailer.sent[0][1] == "Your AI-Born bonus pack is ready"

    def test_duplicate_file_is_refused(self, client, db, login_as, user):
        login_as(user)
        assert _upload(client).status_code == 202

        resp = _upload(client)
        assert resp.status_code == 409
        body = resp.json()
        assert body["error"] == "DUPLICATE_RECEIPT"
        assert body["status"] == ReceiptStatus.DUPLICATE
        assert db.query(Receipt).count() == 1

    def test_duplicate_across_accounts(self, client, db, login_as, user, make_user):
        login_as(user)
        _upload(client)
        login_as(make_user("other@example.com"))
        assert _upload(client).status_code == 409

    def test_rejects_non_image(self, client, login_as, user):
        login_as(user)
        resp = client.post(
            "/receipts/upload",
            files={"file": ("receipt.png", b"GIF89a not allowed", "image/png")},
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "INVALID_FILE_TYPE"

    def test_rejects_oversize_file(self, client, ctx, login_as, user):
        ctx.settings = ctx.settings.model_copy(update={"MAX_UPLOAD_BYTES": 64})
        login_as(user)
        resp = _upload(client)
        assert resp.status_code == 413
        assert resp.json()["error"] == "FILE_TOO_LARGE"

    def test_rejects_unknown_format(self, client, login_as, user):
        login_as(user)
        resp = _upload(client, format="scroll")
        assert resp.status_code == 400
        assert resp.json()["error"] == "INVALID_FORMAT"

    def test_rate_limited_per_user(self, client, login_as, user):
        login_as(user)
        for i in range(5):
            assert _upload(client, tag=str(i)).status_code == 202
        resp = _upload(client, tag="6")
        assert resp.status_code == 429
        assert resp.json()["error"] == "RATE_LIMIT_EXCEEDED"
        assert int(resp.headers["retry-after"]) > 0
        assert resp.headers["x-ratelimit-remaining"] == "0"


class TestReceiptStatus:
    def test_owner_sees_status(self, client, login_as, user):
        login_as(user)
        receipt_id = _upload(client).json()["receipt_id"]
        resp = client.get(f"/receipts/{receipt_id}")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == ReceiptStatus.VERIFIED
        assert body["claim_status"] == BonusClaimStatus.DELIVERED
        assert body["verification_score"] == 97

    def test_other_users_get_404(self, client, login_as, user, make_user):
        login_as(user)
        receipt_id = _upload(client).json()["receipt_id"]
        login_as(make_user("nosy@example.com"))
        assert client.get(f"/receipts/{receipt_id}").status_code == 404

    def test_admin_can_see_any_receipt(self, client, login_as, user, admin_user):
        login_as(user)
        receipt_id = _upload(client).json()["receipt_id"]
        login_as(admin_user)
        assert client.get(f"/receipts/{receipt_id}").status_code == 200

    def test_my_receipts(self, client, login_as, user):
        login_as(user)
        _upload(client, tag="1")
        _upload(client, tag="2")
        assert len(client.get("/me/receipts").json()) == 2


class TestBonusClaimForm:
    def test_claim_creates_user_and_delivers(self, client, db, mailer):
        resp = _claim_form(client)
        assert resp.status_code == 202

        db.expire_all()
        user = db.query(User).filter(User.email == "gift@example.com").one()
        assert user.password_hash is None
        claim = db.get(BonusClaim, resp.json()["claim_id"])
        assert claim.delivery_email == "gift@example.com"
        assert claim.status == BonusClaimStatus.DELIVERED
        assert mailer.sent[0][0] == "gift@example.com"

    def test_existing_user_is_reused(self, client, db, user):
        resp = _claim_form(client, email="reader@example.com")
        assert resp.status_code == 202
        db.expire_all()
        assert db.query(User).count() == 1
        assert db.get(Receipt, resp.json()["receipt_id"]).user_id == user.id

    def test_honeypot(self, client, db):
        resp = _claim_form(client, honeypot="http://spam.example")
        assert resp.status_code == 400
        assert resp.json()["error"] == "INVALID_REQUEST"
        assert db.query(Receipt).count() == 0

    def test_missing_fields_are_listed(self, client):
        resp = client.post("/bonus/claim", data={"email": "a@b.com", "format": "ebook"})
        assert resp.status_code == 400
        body = resp.json()
        assert body["error"] == "MISSING_FIELDS"
        assert body["fields"] == ["orderId", "retailer", "receipt"]

    def test_invalid_email(self, client):
        resp = _claim_form(client, email="not-an-email")
        assert resp.status_code == 400
        assert resp.json()["error"] == "INVALID_EMAIL"

    def test_order_id_length(self, client):
        assert _claim_form(client, orderId="1234").json()["error"] == "INVALID_ORDER_ID"
        assert _claim_form(client, orderId="x" * 101).json()["error"] == "INVALID_ORDER_ID"

    def test_duplicate(self, client):
        assert _claim_form(client).status_code == 202
        resp = _claim_form(client, email="second@example.com")
        assert resp.status_code == 409
        assert resp.json()["status"] == ReceiptStatus.DUPLICATE

    def test_rate_limited_per_ip(self, client):
        for i in range(3):
            assert _claim_form(client, tag=str(i)).status_code == 202
        assert _claim_form(client, tag="4").status_code == 429

    def test_rejected_receipt_does_not_deliver(self, client, ctx, db, mailer):
        ctx.parser = FakeParser(good_receipt(ctx.clock, retailer="Shady Books Ltd"))
        resp = _claim_form(client)
        db.expire_all()
        assert db.get(BonusClaim, resp.json()["claim_id"]).status == BonusClaimStatus.REJECTED
        assert [subject for _, subject, _ in mailer.sent] == ["We couldn't verify your receipt"]


class TestAuth:
    def test_signup_login_me(self, client):
        resp = client.post(
            "/auth/signup", json={"email": "New@Example.com", "password": "correct horse", "name": "New"}
        )
        assert resp.status_code == 200
        assert resp.json()["email"] == "new@example.com"
        assert resp.json()["is_admin"] is False

        me = client.get("/me")
        assert me.status_code == 200
        assert me.json()["name"] == "New"

        client.post("/auth/logout")
        client.cookies.clear()
        assert client.get("/me").status_code == 401

        resp = client.post("/auth/login", json={"email": "new@example.com", "password": "correct horse"})
        assert resp.status_code == 200
        assert client.get("/me").status_code == 200

    def test_wrong_password(self, client):
        client.post("/auth/signup", json={"email": "a@example.com", "password": "password-one"})
        resp = client.post("/auth/login", json={"email": "a@example.com", "password": "password-two"})
        assert resp.status_code == 401

    def test_signup_twice_conflicts(self, client):
        payload = {"email": "a@example.com", "password": "password-one"}
        client.post("/auth/signup", json=payload)
        assert client.post("/auth/signup", json=payload).status_code == 409

    def test_claim_form_user_can_set_password(self, client, db):
        _claim_form(client)
        resp = client.post("/auth/signup", json={"email": "gift@example.com", "password": "password-one"})
        assert resp.status_code == 200
        assert len(client.get("/me/receipts").json()) == 1

    def test_admin_flag(self, client):
        resp = client.post("/auth/signup", json={"email": "admin@ai-born.org", "password": "password-one"})
        assert resp.json()["is_admin"] is True

    def test_refresh_rotates_session(self, client):
        client.post("/auth/signup", json={"email": "a@example.com", "password": "password-one"})
        old_refresh = client.cookies.get("refresh_token")
        assert client.post("/auth/refresh").status_code == 200
        assert client.cookies.get("refresh_token") != old_refresh

        client.cookies.clear()
        client.cookies.set("refresh_token", old_refresh)
        assert client.post("/auth/refresh").status_code == 401


def test_insert_race_loser_leaves_no_file(db, ctx, user, monkeypatch):
    data = png_bytes("race")
    save = ctx.storage.save

    def save_then_lose_race(blob, filename, folder="receipts"):
        ref = save(blob, filename, folder)
        db.add(Receipt(user_id=user.id, file_url="/uploads/receipts/winner.png", file_hash=file_hash(data)))
        db.commit()
        return ref

    monkeypatch.setattr(ctx.storage, "save", save_then_lose_race)
    with pytest.raises(DuplicateReceipt):
        accept_receipt(db, ctx, user, data, delivery_email=user.email, book_format="hardcover")

    assert os.listdir(os.path.join(ctx.settings.UPLOAD_DIR, "receipts")) == []
    assert db.query(Receipt).count() == 1
