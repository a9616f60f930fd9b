"""
Shared pytest fixtures: in-memory SQLite, temp file storage, a fake PDF
renderer (no Chromium needed) and a FastAPI TestClient.
"""
import os
import tempfile

_TMP = tempfile.mkdtemp(prefix="donation-receipts-tests-")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("DATA_DIR", _TMP)
os.environ.setdefault("LOCAL_STORAGE_PATH", os.path.join(_TMP, "files"))
os.environ.setdefault("LOGO_PATH", "")
os.environ.setdefault("PUBLIC_BASE_URL", "http://testserver")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.config import settings  # noqa: E402
from app.donations import pipeline  # noqa: E402
from app.donations.database import Base, get_db  # noqa: E402
from app.donations.models import DonationModel, EmailSettingsModel  # noqa: E402,F401
from app.donations.pipeline.errors import RenderError  # noqa: E402
from app.donations.pipeline.receipt_renderer import get_renderer  # noqa: E402
from app.main import app  # noqa: E402

# StaticPool ensures all connections share the same in-memory database
_ENGINE = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
_Session = sessionmaker(autocommit=False, autoflush=False, bind=_ENGINE)


class FakeRenderer:
    """Stands in for Chromium: returns a tiny PDF that embeds the HTML."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: list[str] = []

    async def html_to_pdf(self, html_content: str) -> bytes:
        self.calls.append(html_content)
        if self.fail:
            raise RenderError("Browser launch failed: simulated")
        return b"%PDF-1.4\n" + html_content.encode("utf-8") + b"\n%%EOF"


class FakeMailer:
    def __init__(self, result: bool = True):
        self.result = result
        self.sent: list[dict] = []

    async def __call__(self, recipient_email, recipient_name, pdf_bytes, receipt_number, db=None):
        self.sent.append(
            {
                "to": recipient_email,
                "name": recipient_name,
                "pdf": pdf_bytes,
                "receipt_number": receipt_number,
            }
        )
        return self.result


@pytest.fixture(autouse=True)
def _reset_tables():
    Base.metadata.create_all(bind=_ENGINE)
    yield
    Base.metadata.drop_all(bind=_ENGINE)


@pytest.fixture(autouse=True)
def _storage_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "STORAGE_BACKEND", "local")
    monkeypatch.setattr(settings, "LOCAL_STORAGE_PATH", str(tmp_path / "files"))
    monkeypatch.setattr(settings, "PUBLIC_BASE_URL", "http://testserver")
    monkeypatch.setattr(settings, "LOGO_PATH", "")
    return tmp_path / "files"


@pytest.fixture()
def db():
    session = _Session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def renderer():
    return FakeRenderer()


@pytest.fixture()
def mailer(monkeypatch):
    fake = FakeMailer(result=True)
    monkeypatch.setattr(pipeline, "send_receipt_email", fake)
    return fake


@pytest.fixture()
def client(db, renderer):
    def _override():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = _override
    app.dependency_overrides[get_renderer] = lambda: renderer
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
