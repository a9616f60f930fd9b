"""
Receipt renderer: donation snapshot → fixed HTML layout → A4 PDF.

Preview and approval both go through ``render_receipt_pdf`` so the document
an admin previews is the document the donor receives.
"""
from __future__ import annotations

import asyncio
import base64
import html
import logging
import os
from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import urlparse

import httpx
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright
from pydantic import BaseModel

from app.config import settings
from app.donations.pipeline import thai_text
from app.donations.pipeline.errors import RenderError
from app.donations.pipeline.storage import LOCAL_URL_PREFIX

logger = logging.getLogger(__name__)

CHROMIUM_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--no-first-run",
    "--no-zygote",
    "--disable-gpu",
]
PDF_MARGIN = {"top": "20mm", "right": "20mm", "bottom": "20mm", "left": "20mm"}

AUTO_ISSUED_NOTE = "ใบเสร็จฉบับนี้ออกโดยระบบอัตโนมัติ มีผลใช้งานโดยไม่ต้องลงลายมือชื่อ"
KEEP_NOTE = "กรุณาเก็บใบเสร็จนี้ไว้เป็นหลักฐานในการบริจาค"


class SignerInfo(BaseModel):
    name: str = ""
    title: str = ""
    signature_data_uri: Optional[str] = None


class ReceiptContext(BaseModel):
    """Everything the template shows, already formatted."""
    receipt_number: str
    issue_date: str
    issue_time: str
    status_label: str = "อนุมัติแล้ว"
    full_name: str
    birth_date: str
    email: str
    phone: str
    amount: str
    amount_words: str
    generated_at: str
    org_name: str = ""
    signer: SignerInfo = SignerInfo()


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------

def build_receipt_context(
    donation: Any,
    signer: Optional[SignerInfo] = None,
    generated_at: Optional[datetime] = None,
) -> ReceiptContext:
    """``donation`` is a DonationModel or a ReceiptPayload (same attributes)."""
    offset = settings.RECEIPT_UTC_OFFSET_HOURS
    now = generated_at or datetime.now(timezone.utc)
    created = thai_text.to_local(donation.created_at or now, offset)
    birth = donation.birth_date

    return ReceiptContext(
        receipt_number=donation.id[:8].upper(),
        issue_date=thai_text.thai_long_date(created),
        issue_time=thai_text.thai_time(created),
        full_name=f"{donation.title}{donation.first_name} {donation.last_name}".strip(),
        birth_date=thai_text.thai_long_date(birth) if birth else "-",
        email=donation.email or "-",
        phone=donation.phone or "-",
        amount=thai_text.format_amount(donation.amount),
        amount_words=thai_text.baht_text(donation.amount),
        generated_at=thai_text.thai_short_datetime(thai_text.to_local(now, offset)),
        org_name=settings.RECEIPT_ORG_NAME,
        signer=signer or SignerInfo(),
    )


# ---------------------------------------------------------------------------
# Images (best effort)
# ---------------------------------------------------------------------------

def _guess_mime(path: str, fallback: str = "image/png") -> str:
    ext = os.path.splitext(path)[1].lower()
    return {
        ".png": "image/png",
        ".jpg": "image/jpeg",
        ".jpeg": "image/jpeg",
        ".webp": "image/webp",
        ".gif": "image/gif",
        ".svg": "image/svg+xml",
    }.get(ext, fallback)


def _data_uri(data: bytes, mime: str) -> str:
    return f"data:{mime};base64,{base64.b64encode(data).decode()}"


def _local_file_for_url(url: str) -> Optional[str]:
    """Map our own ``/files/...`` URLs back to disk to skip an HTTP round-trip."""
    base = settings.PUBLIC_BASE_URL.rstrip("/") + LOCAL_URL_PREFIX + "/"
    if settings.STORAGE_BACKEND != "local" or not url.startswith(base):
        return None
    root = os.path.abspath(settings.LOCAL_STORAGE_PATH)
    path = os.path.abspath(os.path.join(root, url[len(base):]))
    if not path.startswith(root + os.sep):
        return None
    return path


async def fetch_image_data_uri(url: str) -> Optional[str]:
    """Fetch ``url`` and return it as a data URI, or None on any failure."""
    try:
        local = _local_file_for_url(url)
        if local:
            with open(local, "rb") as f:
                return _data_uri(f.read(), _guess_mime(local))

        async with httpx.AsyncClient(timeout=settings.IMAGE_FETCH_TIMEOUT) as client:
            resp = await client.get(url, follow_redirects=True)
            resp.raise_for_status()
        mime = resp.headers.get("content-type", "").split(";")[0].strip()
        if not mime.startswith("image/"):
            mime = _guess_mime(urlparse(url).path)
        return _data_uri(resp.content, mime)
    except (OSError, httpx.HTTPError) as e:
        logger.warning("Image fetch failed for %s: %s", url, e)
        return None


def load_logo(logo: Optional[str] = None) -> Optional[str]:
    """Caller-supplied data URI wins; otherwise the LOGO_PATH file if present."""
    if logo and logo.startswith("data:image/"):
        return logo
    path = settings.LOGO_PATH
    if not path or not os.path.isfile(path):
        return None
    try:
        with open(path, "rb") as f:
            return _data_uri(f.read(), _guess_mime(path))
    except OSError as e:
        logger.warning("Logo file unreadable (%s): %s", path, e)
        return None


async def load_signer(settings_row: Any) -> SignerInfo:
    if settings_row is None:
        return SignerInfo()
    signature = None
    if settings_row.signature_image_url:
        signature = await fetch_image_data_uri(settings_row.signature_image_url)
    return SignerInfo(
        name=settings_row.signer_name or "",
        title=settings_row.signer_title or "",
        signature_data_uri=signature,
    )


# ---------------------------------------------------------------------------
# HTML
# ---------------------------------------------------------------------------

_STYLE = """
* { margin: 0; padding: 0; box-sizing: border-box; }
body { font-family: 'Sarabun', Arial, sans-serif; background: white; color: #333; line-height: 1.6; }
.container { max-width: 794px; margin: 0 auto; padding: 40px; }
.logo { text-align: center; margin-bottom: 20px; }
.logo img { width: 120px; height: auto; }
.header { text-align: center; margin-bottom: 30px; }
.header h1 { font-size: 24px; font-weight: bold; margin-bottom: 5px; }
.header p { font-size: 16px; }
table { width: 100%; border-collapse: collapse; margin-bottom: 20px; border: 1px solid #333; }
td { border: 1px solid #333; padding: 8px; }
.table-header { background: #f8f8f8; font-weight: bold; width: 25%; }
.section-title { font-size: 18px; margin: 20px 0 10px 0; font-weight: bold; border-bottom: 2px solid #333; padding-bottom: 5px; }
.amount-table { border: 2px solid #333; margin-bottom: 30px; }
.amount-header { background: #f0f8ff; font-weight: bold; text-align: center; font-size: 16px; padding: 15px; }
.amount-value { text-align: center; font-size: 28px; font-weight: bold; color: #16a34a; padding: 20px 20px 5px 20px; }
.amount-words { text-align: center; font-size: 16px; padding: 5px 20px 20px 20px; }
.status { color: #16a34a; font-weight: bold; }
.note { text-align: center; color: #666; font-size: 12px; font-style: italic; margin-bottom: 30px; }
.note p { margin-bottom: 5px; }
.signature { width: 260px; margin: 20px 0 0 auto; text-align: center; }
.signature img { max-height: 70px; max-width: 220px; }
.signature .line { border-top: 1px dotted #333; margin-top: 6px; padding-top: 4px; font-size: 14px; }
.signature .caption { font-size: 12px; color: #666; }
.thanks { text-align: center; margin-top: 20px; font-size: 14px; font-weight: bold; }
.timestamp { text-align: right; margin-top: 20px; color: #666; font-size: 10px; }
"""


def _esc(value: str) -> str:
    return html.escape(value or "")


def _signature_block(signer: SignerInfo) -> str:
    if signer.signature_data_uri:
        image = f'<img src="{_esc(signer.signature_data_uri)}" alt="Signature" />'
    else:
        image = '<div style="height:70px;"></div>'

    lines = ""
    if signer.name:
        lines += f'<div class="line">({_esc(signer.name)})</div>'
    if signer.title:
        lines += f'<div class="caption">{_esc(signer.title)}</div>'
    if not signer.signature_data_uri and not signer.name:
        lines += '<div class="caption">ออกโดยระบบอัตโนมัติ</div>'

    return f'<div class="signature">{image}{lines}</div>'


def render_receipt_html(ctx: ReceiptContext, logo_data_uri: Optional[str] = None) -> str:
    logo = (
        f'<div class="logo"><img src="{_esc(logo_data_uri)}" alt="Logo" /></div>'
        if logo_data_uri
        else ""
    )
    org = f"<p>{_esc(ctx.org_name)}</p>" if ctx.org_name else ""

    return f"""<!DOCTYPE html>
<html lang="th">
<head>
  <meta charset="UTF-8">
  <title>ใบเสร็จรับเงินบริจาค {_esc(ctx.receipt_number)}</title>
  <link href="https://fonts.googleapis.com/css2?family=Sarabun:wght@300;400;600;700&display=swap" rel="stylesheet">
  <style>{_STYLE}</style>
</head>
<body>
  <div class="container">
    {logo}
    <div class="header">
      <h1>ใบเสร็จรับเงินบริจาค</h1>
      <p>DONATION RECEIPT</p>
      {org}
    </div>

    <table>
      <tr>
        <td class="table-header">เลขที่ใบเสร็จ</td>
        <td style="width:25%;">{_esc(ctx.receipt_number)}</td>
        <td class="table-header">วันที่ออกเอกสาร</td>
        <td style="width:25%;">{_esc(ctx.issue_date)}</td>
      </tr>
      <tr>
        <td class="table-header">เวลา</td>
        <td>{_esc(ctx.issue_time)}</td>
        <td class="table-header">สถานะ</td>
        <td class="status">{_esc(ctx.status_label)}</td>
      </tr>
    </table>

    <h2 class="section-title">ข้อมูลผู้บริจาค</h2>
    <table>
      <tr><td class="table-header">ชื่อ-นามสกุล</td><td style="width:75%;">{_esc(ctx.full_name)}</td></tr>
      <tr><td class="table-header">วันเกิด</td><td>{_esc(ctx.birth_date)}</td></tr>
      <tr><td class="table-header">อีเมล</td><td>{_esc(ctx.email)}</td></tr>
      <tr><td class="table-header">เบอร์โทรศัพท์</td><td>{_esc(ctx.phone)}</td></tr>
    </table>

    <h2 class="section-title">รายละเอียดการบริจาค</h2>
    <table class="amount-table">
      <tr><td class="amount-header">จำนวนเงินที่บริจาค</td></tr>
      <tr><td class="amount-value">{_esc(ctx.amount)} บาท</td></tr>
      <tr><td class="amount-words">({_esc(ctx.amount_words)})</td></tr>
    </table>

    <div class="note">
      <p>{AUTO_ISSUED_NOTE}</p>
      <p>{KEEP_NOTE}</p>
    </div>

    {_signature_block(ctx.signer)}

    <div class="thanks">
      <p>ขอขอบพระคุณที่ท่านให้การสนับสนุนและร่วมบริจาค</p>
      <p>ขอให้พระคุณอันยิ่งใหญ่จงมีแด่ท่าน</p>
    </div>
    <p class="timestamp">เอกสารออกโดยระบบเมื่อ {_esc(ctx.generated_at)}</p>
  </div>
</body>
</html>
"""


# ---------------------------------------------------------------------------
# Headless browser
# ---------------------------------------------------------------------------

class ReceiptRenderer:
    """Long-lived Chromium shared across requests.

    Launched lazily; a failed launch leaves no cached handle so the next call
    starts from scratch. A disconnected browser is relaunched.
    """

    def __init__(self, launch_args: Optional[list[str]] = None):
        self._launch_args = launch_args if launch_args is not None else CHROMIUM_ARGS
        self._playwright = None
        self._browser = None
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    async def _get_browser(self):
        async with self._lock:
            if self.is_running:
                return self._browser
            await self._shutdown()
            logger.info("Launching headless Chromium")
            try:
                self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(
                    headless=True, args=self._launch_args
                )
            except Exception as e:
                await self._shutdown()
                logger.error("Chromium launch failed: %s", e)
                raise RenderError(f"Browser launch failed: {e}") from e
            return self._browser

    async def html_to_pdf(self, html_content: str) -> bytes:
        browser = await self._get_browser()
        page = None
        try:
            page = await browser.new_page()
            await page.set_content(
                html_content, wait_until="networkidle", timeout=settings.RENDER_TIMEOUT_MS
            )
            return await page.pdf(format="A4", print_background=True, margin=PDF_MARGIN)
        except PlaywrightTimeoutError as e:
            raise RenderError(f"Timed out loading receipt content: {e}") from e
        except PlaywrightError as e:
            raise RenderError(f"PDF export failed: {e}") from e
        finally:
            if page is not None:
                try:
                    await page.close()
                except PlaywrightError as e:
                    logger.warning("Closing render page failed: %s", e)

    async def _shutdown(self) -> None:
        browser, pw = self._browser, self._playwright
        self._browser = None
        self._playwright = None
        if browser is not None:
            try:
                await browser.close()
            except PlaywrightError as e:
                logger.warning("Browser close failed: %s", e)
        if pw is not None:
            try:
                await pw.stop()
            except PlaywrightError as e:
                logger.warning("Playwright stop failed: %s", e)

    async def close(self) -> None:
        async with self._lock:
            await self._shutdown()


_renderer: Optional[ReceiptRenderer] = None


def get_renderer() -> ReceiptRenderer:
    global _renderer
    if _renderer is None:
        _renderer = ReceiptRenderer()
    return _renderer


async def shutdown_renderer() -> None:
    global _renderer
    if _renderer is not None:
        await _renderer.close()
        _renderer = None


async def render_receipt_pdf(
    donation: Any,
    settings_row: Any = None,
    logo: Optional[str] = None,
    renderer: Optional[ReceiptRenderer] = None,
    generated_at: Optional[datetime] = None,
) -> bytes:
    """Single entry point for preview and approval."""
    signer = await load_signer(settings_row)
    ctx = build_receipt_context(donation, signer=signer, generated_at=generated_at)
    html_content = render_receipt_html(ctx, logo_data_uri=load_logo(logo))
    pdf = await (renderer or get_renderer()).html_to_pdf(html_content)
    logger.info("Rendered receipt %s (%d bytes)", ctx.receipt_number, len(pdf))
    return pdf
