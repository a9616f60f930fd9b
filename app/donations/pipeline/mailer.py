"""
Receipt e-mail dispatch over authenticated SMTP.

Best effort: ``send_receipt_email`` reports failure as ``False`` and never
raises, so approval can succeed without a working mail setup.
"""
from __future__ import annotations

import asyncio
import logging
from email.message import EmailMessage
from email.utils import formataddr
from typing import Optional

import aiosmtplib
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.donations.pipeline.settings_store import decrypt_secret, get_email_settings

logger = logging.getLogger(__name__)

IMPLICIT_TLS_PORT = 465


class SmtpConfig(BaseModel):
    host: str = ""
    port: int = 587
    user: str = ""
    password: str = ""
    sender_email: str = ""
    sender_name: str = ""

    @property
    def missing(self) -> list[str]:
        required = {
            "host": self.host,
            "user": self.user,
            "password": self.password,
            "sender_email": self.sender_email,
        }
        return [name for name, value in required.items() if not value]

    @property
    def use_tls(self) -> bool:
        return self.port == IMPLICIT_TLS_PORT


def resolve_smtp_config(row=None) -> SmtpConfig:
    """Settings row first, environment defaults per missing field."""
    password = decrypt_secret(row.smtp_password_encrypted) if row is not None else None

    def pick(attr: str):
        return getattr(row, attr, None) if row is not None else None

    return SmtpConfig(
        host=pick("smtp_host") or settings.SMTP_HOST,
        port=pick("smtp_port") or settings.SMTP_PORT or 587,
        user=pick("smtp_user") or settings.SMTP_USER,
        password=password or settings.SMTP_PASSWORD,
        sender_email=pick("sender_email") or settings.FROM_EMAIL,
        sender_name=pick("sender_name") or settings.FROM_NAME,
    )


def build_receipt_message(
    cfg: SmtpConfig,
    recipient_email: str,
    recipient_name: str,
    pdf_bytes: bytes,
    receipt_number: str,
) -> EmailMessage:
    msg = EmailMessage()
    msg["From"] = formataddr((cfg.sender_name, cfg.sender_email))
    msg["To"] = recipient_email
    msg["Subject"] = f"ใบเสร็จรับเงินบริจาค - เลขที่ {receipt_number}"

    body = "\n".join([
        f"เรียน คุณ{recipient_name}",
        "",
        "ขอบคุณสำหรับการบริจาคของท่าน",
        "",
        "กรุณาดูใบเสร็จรับเงินที่แนบมาพร้อมนี้",
        f"เลขที่ใบเสร็จ: {receipt_number}",
        "",
        "ขอแสดงความนับถือ",
        cfg.sender_name,
    ]).strip()
    msg.set_content(body)
    msg.add_attachment(
        pdf_bytes,
        maintype="application",
        subtype="pdf",
        filename=f"receipt-{receipt_number}.pdf",
    )
    return msg


def _transport_kwargs(cfg: SmtpConfig) -> dict:
    return {
        "hostname": cfg.host,
        "port": cfg.port,
        "username": cfg.user,
        "password": cfg.password,
        "use_tls": cfg.use_tls,
        # None: upgrade only when the server advertises STARTTLS
        "start_tls": False if cfg.use_tls else None,
        "timeout": settings.SMTP_TIMEOUT,
    }


async def verify_connection(cfg: SmtpConfig) -> bool:
    """Connect + authenticate + NOOP within SMTP_VERIFY_TIMEOUT."""
    async def _check():
        smtp = aiosmtplib.SMTP(**_transport_kwargs(cfg))
        await smtp.connect()
        try:
            await smtp.noop()
        finally:
            await smtp.quit()

    try:
        await asyncio.wait_for(_check(), timeout=settings.SMTP_VERIFY_TIMEOUT)
    except (asyncio.TimeoutError, aiosmtplib.SMTPException, OSError) as e:
        # Some providers fail the check yet accept the message
        logger.warning("SMTP verification failed for %s:%s, sending anyway: %s", cfg.host, cfg.port, e)
        return False
    return True


async def send_receipt_email(
    recipient_email: str,
    recipient_name: str,
    pdf_bytes: bytes,
    receipt_number: str,
    db: Optional[Session] = None,
) -> bool:
    try:
        row = None
        if db is not None:
            try:
                row = get_email_settings(db)
            except SQLAlchemyError as e:
                logger.warning("Failed to load email settings from DB: %s", e)

        cfg = resolve_smtp_config(row)
        if cfg.missing:
            logger.error("Email settings not configured (missing: %s)", ", ".join(cfg.missing))
            return False

        await verify_connection(cfg)

        msg = build_receipt_message(cfg, recipient_email, recipient_name, pdf_bytes, receipt_number)
        await aiosmtplib.send(msg, **_transport_kwargs(cfg))
        logger.info("Receipt %s e-mailed to %s", receipt_number, recipient_email)
        return True
    except Exception:
        logger.exception("Error sending receipt %s to %s", receipt_number, recipient_email)
        return False
