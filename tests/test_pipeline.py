"""
Unit tests for the approval pipeline: approve, reject, delete and preview.
"""
import asyncio
import time
import uuid
from datetime import date, datetime
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from app.donations import pipeline
from app.donations.models.donation import DonationModel
from app.donations.pipeline import (
    ALLOWED_TRANSITIONS,
    MSG_APPROVED_NOT_SENT,
    MSG_APPROVED_SENT,
    approve_donation,
    delete_donation,
    preview_receipt,
    reject_donation,
)
from app.donations.pipeline import storage
from app.donations.pipeline.errors import (
    AlreadyApproved,
    DonationNotFound,
    InvalidTransition,
    PipelineError,
    RenderError,
    StorageError,
)
from app.donations.schemas import ReceiptPayload

CREATED = datetime(2020, 1, 1, 3, 15)


def _add_donation(db, status="pending", **overrides) -> DonationModel:
    data = dict(
        id=str(uuid.uuid4()),
        title="นาย",
        first_name="สมชาย",
        last_name="ใจดี",
        email="a@b.com",
        phone="0812345678",
        birth_date=date(1990, 1, 1),
        amount=Decimal("2500"),
        receipt_url="http://testserver/files/proofs/p.png",
        status=status,
        created_at=CREATED,
        updated_at=CREATED,
    )
    data.update(overrides)
    row = DonationModel(**data)
    db.add(row)
    db.commit()
    return row


def _snapshot(db, donation_id):
    db.expire_all()
    row = db.get(DonationModel, donation_id)
    return (row.status, row.pdf_url, row.updated_at)


# =====================================================================
# State machine
# =====================================================================
class TestTransitions:
    def test_table_is_total(self):
        assert set(ALLOWED_TRANSITIONS) == {"pending", "approved", "rejected"}
        assert ALLOWED_TRANSITIONS["approved"] == frozenset()
        assert ALLOWED_TRANSITIONS["rejected"] == frozenset()


# =====================================================================
# approve
# =====================================================================
class TestApprove:
    def test_happy_path(self, db, renderer, mailer, _storage_dir):
        d = _add_donation(db)
        result = asyncio.run(approve_donation(db, d.id, renderer=renderer))

        assert result.success is True
        assert result.email_sent is True
        assert result.message == MSG_APPROVED_SENT
        assert result.pdf_url == f"http://testserver/files/receipts/receipt-{d.id}.pdf"

        status, pdf_url, updated_at = _snapshot(db, d.id)
        assert status == "approved"
        assert pdf_url == result.pdf_url
        assert updated_at > CREATED

        stored = _storage_dir / "receipts" / f"receipt-{d.id}.pdf"
        assert stored.read_bytes().startswith(b"%PDF")

        assert len(mailer.sent) == 1
        sent = mailer.sent[0]
        assert sent["to"] == "a@b.com"
        assert sent["name"] == "นาย สมชาย ใจดี"
        assert sent["receipt_number"] == d.id[:8].upper()
        assert sent["pdf"] == stored.read_bytes()

    def test_amount_words_in_document(self, db, renderer, mailer):
        d = _add_donation(db, amount=Decimal("1500"))
        asyncio.run(approve_donation(db, d.id, renderer=renderer))
        assert "หนึ่งพันห้าร้อยบาทถ้วน" in renderer.calls[0]

    def test_not_found_no_side_effects(self, db, renderer, mailer, _storage_dir):
        with pytest.raises(DonationNotFound) as exc:
            asyncio.run(approve_donation(db, "missing-id", renderer=renderer))
        assert exc.value.status_code == 404
        assert renderer.calls == []
        assert not (_storage_dir / "receipts").exists()
        assert mailer.sent == []

    def test_already_approved_zero_writes(self, db, renderer, mailer):
        d = _add_donation(db, status="approved", pdf_url="http://old/receipt.pdf")
        before = _snapshot(db, d.id)
        with pytest.raises(AlreadyApproved) as exc:
            asyncio.run(approve_donation(db, d.id, renderer=renderer))
        assert exc.value.status_code == 400
        assert _snapshot(db, d.id) == before
        assert renderer.calls == []
        assert mailer.sent == []

    def test_rejected_cannot_be_approved(self, db, renderer, mailer):
        d = _add_donation(db, status="rejected")
        with pytest.raises(InvalidTransition):
            asyncio.run(approve_donation(db, d.id, renderer=renderer))
        assert _snapshot(db, d.id)[0] == "rejected"
        assert renderer.calls == []

    def test_render_failure_leaves_record(self, db, renderer, mailer, _storage_dir):
        renderer.fail = True
        d = _add_donation(db)
        before = _snapshot(db, d.id)
        with pytest.raises(RenderError) as exc:
            asyncio.run(approve_donation(db, d.id, renderer=renderer))
        assert exc.value.status_code == 500
        assert _snapshot(db, d.id) == before
        assert not (_storage_dir / "receipts").exists()
        assert mailer.sent == []

    def test_storage_failure_leaves_record(self, db, renderer, mailer, monkeypatch):
        d = _add_donation(db)
        before = _snapshot(db, d.id)

        def _fail(key, data, content_type):
            raise StorageError("disk full")

        monkeypatch.setattr(storage, "store_bytes", _fail)
        with pytest.raises(StorageError):
            asyncio.run(approve_donation(db, d.id, renderer=renderer))
        assert _snapshot(db, d.id) == before
        assert mailer.sent == []

    def test_update_failure_is_server_error(self, db, renderer, mailer, monkeypatch):
        d = _add_donation(db)

        def _fail(*args, **kwargs):
            raise OperationalError("UPDATE donations", {}, Exception("locked"))

        monkeypatch.setattr(db, "commit", _fail)
        with pytest.raises(PipelineError) as exc:
            asyncio.run(approve_donation(db, d.id, renderer=renderer))
        assert exc.value.step == "update"
        assert exc.value.status_code == 500
        assert _snapshot(db, d.id)[0] == "pending"
        assert mailer.sent == []

    def test_email_failure_still_approves(self, db, renderer, monkeypatch):
        async def _mail_down(*args, **kwargs):
            return False

        monkeypatch.setattr(pipeline, "send_receipt_email", _mail_down)
        d = _add_donation(db)
        result = asyncio.run(approve_donation(db, d.id, renderer=renderer))
        assert result.success is True
        assert result.email_sent is False
        assert result.message == MSG_APPROVED_NOT_SENT
        status, pdf_url, _ = _snapshot(db, d.id)
        assert status == "approved"
        assert pdf_url == result.pdf_url

    def test_lost_race_reports_already_approved(self, db, renderer, mailer, monkeypatch):
        d = _add_donation(db)
        real_store = storage.store_bytes

        def _store_then_race(key, data, content_type):
            out = real_store(key, data, content_type)
            # A concurrent approval commits between our read and our write
            db.query(DonationModel).filter(DonationModel.id == d.id).update(
                {"status": "approved", "pdf_url": "http://other/receipt.pdf"}
            )
            db.commit()
            return out

        monkeypatch.setattr(storage, "store_bytes", _store_then_race)
        with pytest.raises(AlreadyApproved):
            asyncio.run(approve_donation(db, d.id, renderer=renderer))
        assert mailer.sent == []

    def test_retry_overwrites_same_object(self, db, renderer, mailer, monkeypatch, _storage_dir):
        d = _add_donation(db)
        attempts = {"n": 0}
        real_update = pipeline._conditional_status_update

        def _flaky_update(*args, **kwargs):
            attempts["n"] += 1
            if attempts["n"] == 1:
                raise PipelineError("Database error: simulated", step="update")
            return real_update(*args, **kwargs)

        monkeypatch.setattr(pipeline, "_conditional_status_update", _flaky_update)
        with pytest.raises(PipelineError):
            asyncio.run(approve_donation(db, d.id, renderer=renderer))
        assert _snapshot(db, d.id)[0] == "pending"

        result = asyncio.run(approve_donation(db, d.id, renderer=renderer))
        assert result.success is True
        assert [p.name for p in (_storage_dir / "receipts").iterdir()] == [f"receipt-{d.id}.pdf"]

    def test_timeout(self, db, mailer):
        class _SlowRenderer:
            async def html_to_pdf(self, html_content):
                await asyncio.sleep(5)

        d = _add_donation(db)
        with pytest.raises(PipelineError, match="timed out"):
            asyncio.run(approve_donation(db, d.id, renderer=_SlowRenderer(), timeout=0.05))
        assert _snapshot(db, d.id)[0] == "pending"

    def test_timeout_covers_slow_upload(self, db, renderer, mailer, monkeypatch):
        real_store = storage.store_bytes

        def _slow_store(key, data, content_type):
            time.sleep(1.0)
            return real_store(key, data, content_type)

        monkeypatch.setattr(storage, "store_bytes", _slow_store)
        d = _add_donation(db)
        started = time.monotonic()
        with pytest.raises(PipelineError, match="timed out"):
            asyncio.run(approve_donation(db, d.id, renderer=renderer, timeout=0.1))
        assert time.monotonic() - started < 2.0
        status, pdf_url, _ = _snapshot(db, d.id)
        assert status == "pending"
        assert pdf_url is None
        assert mailer.sent == []


# =====================================================================
# storage keys
# =====================================================================
class TestStorage:
    def test_receipt_key_is_deterministic(self, _storage_dir):
        key = storage.receipt_key("abc")
        storage.store_bytes(key, b"one", "application/pdf")
        storage.store_bytes(key, b"two", "application/pdf")
        files = list((_storage_dir / "receipts").iterdir())
        assert len(files) == 1
        assert files[0].read_bytes() == b"two"

    def test_rejects_traversal(self):
        with pytest.raises(StorageError):
            storage.store_bytes("../outside.pdf", b"x", "application/pdf")

    def test_upload_keys_unique(self):
        a = storage.upload_key("proofs", "slip.JPG")
        b = storage.upload_key("proofs", "slip.JPG")
        assert a != b
        assert a.startswith("proofs/") and a.endswith(".jpg")


# =====================================================================
# reject / delete
# =====================================================================
class TestReject:
    def test_reject_pending(self, db):
        d = _add_donation(db)
        row = reject_donation(db, d.id)
        assert row.status == "rejected"
        assert row.pdf_url is None

    def test_reject_twice_is_noop(self, db):
        d = _add_donation(db, status="rejected")
        before = _snapshot(db, d.id)
        reject_donation(db, d.id)
        assert _snapshot(db, d.id) == before

    def test_reject_approved_refused(self, db):
        d = _add_donation(db, status="approved", pdf_url="http://x/r.pdf")
        with pytest.raises(InvalidTransition):
            reject_donation(db, d.id)
        assert _snapshot(db, d.id)[0] == "approved"

    def test_reject_missing(self, db):
        with pytest.raises(DonationNotFound):
            reject_donation(db, "nope")


class TestDelete:
    def test_delete_keeps_files(self, db, renderer, mailer, _storage_dir):
        d = _add_donation(db)
        asyncio.run(approve_donation(db, d.id, renderer=renderer))
        delete_donation(db, d.id)
        db.expire_all()
        assert db.get(DonationModel, d.id) is None
        assert (_storage_dir / "receipts" / f"receipt-{d.id}.pdf").exists()

    def test_delete_missing(self, db):
        with pytest.raises(DonationNotFound):
            delete_donation(db, "nope")


# =====================================================================
# preview
# =====================================================================
class TestPreview:
    def test_preview_writes_nothing(self, db, renderer, mailer, _storage_dir):
        d = _add_donation(db)
        before = _snapshot(db, d.id)
        payload = ReceiptPayload(
            id=d.id, title=d.title, first_name=d.first_name, last_name=d.last_name,
            email=d.email, phone=d.phone, birth_date=d.birth_date, amount=d.amount,
            status=d.status, created_at=d.created_at,
        )
        pdf = asyncio.run(preview_receipt(payload, db=db, renderer=renderer))
        assert pdf.startswith(b"%PDF")
        assert _snapshot(db, d.id) == before
        assert not _storage_dir.exists() or not any(_storage_dir.rglob("*.pdf"))
        assert mailer.sent == []

    def test_preview_matches_approval_document(self, db, renderer, mailer, monkeypatch):
        fixed = datetime(2026, 10, 19, 7, 0)

        class _FrozenDatetime(datetime):
            @classmethod
            def now(cls, tz=None):
                return fixed.replace(tzinfo=tz) if tz else fixed

        from app.donations.pipeline import receipt_renderer

        monkeypatch.setattr(receipt_renderer, "datetime", _FrozenDatetime)
        d = _add_donation(db)
        payload = ReceiptPayload(
            id=d.id, title=d.title, first_name=d.first_name, last_name=d.last_name,
            email=d.email, phone=d.phone, birth_date=d.birth_date, amount=d.amount,
            status=d.status, created_at=d.created_at,
        )
        preview_pdf = asyncio.run(preview_receipt(payload, db=db, renderer=renderer))
        asyncio.run(approve_donation(db, d.id, renderer=renderer))
        assert renderer.calls[0] == renderer.calls[1]
        assert mailer.sent[0]["pdf"] == preview_pdf
