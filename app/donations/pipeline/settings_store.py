"""
Singleton email / signer settings.

The row lives under the well-known key ``EmailSettingsModel.SETTINGS_KEY``;
the SMTP password is stored as a Fernet token.
"""
from __future__ import annotations

import base64
import hashlib
import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy.orm import Session

from app.config import settings
from app.donations.models.email_settings import SETTINGS_KEY, EmailSettingsModel
from app.donations.schemas import EmailSettingsResponse, EmailSettingsUpdate

logger = logging.getLogger(__name__)

PASSWORD_MASK = "********"


def _get_fernet() -> Fernet:
    key = settings.FERNET_KEY
    if not key:
        # Derive a stable key from SECRET_KEY so a bare install still works
        digest = hashlib.sha256(settings.SECRET_KEY.encode()).digest()
        key = base64.urlsafe_b64encode(digest).decode()
    return Fernet(key.encode())


def encrypt_secret(value: str) -> str:
    return _get_fernet().encrypt(value.encode()).decode()


def decrypt_secret(token: Optional[str]) -> Optional[str]:
    if not token:
        return None
    try:
        return _get_fernet().decrypt(token.encode()).decode()
    except InvalidToken:
        logger.warning("Stored SMTP password cannot be decrypted (key changed?)")
        return None


def get_email_settings(db: Session) -> Optional[EmailSettingsModel]:
    return db.get(EmailSettingsModel, SETTINGS_KEY)


def save_email_settings(db: Session, data: EmailSettingsUpdate) -> EmailSettingsModel:
    """Create the singleton row on first save, update it in place afterwards."""
    row = get_email_settings(db)
    if row is None:
        row = EmailSettingsModel(id=SETTINGS_KEY)
        db.add(row)
        logger.info("Creating email settings")
    else:
        logger.info("Updating email settings")

    row.sender_email = str(data.from_email)
    row.sender_name = data.from_name
    row.smtp_host = data.smtp_host
    row.smtp_port = data.smtp_port
    row.smtp_user = str(data.smtp_user)
    # The settings form echoes the mask back when the password is unchanged
    if data.smtp_pass != PASSWORD_MASK or not row.smtp_password_encrypted:
        row.smtp_password_encrypted = encrypt_secret(data.smtp_pass)
    row.signer_name = data.signer_name
    row.signer_title = data.signer_title
    row.signature_image_url = str(data.signature_image_url) if data.signature_image_url else None

    db.commit()
    db.refresh(row)
    return row


def to_response(row: Optional[EmailSettingsModel]) -> Optional[EmailSettingsResponse]:
    if row is None:
        return None
    has_password = bool(row.smtp_password_encrypted)
    return EmailSettingsResponse(
        smtp_host=row.smtp_host or "",
        smtp_port=row.smtp_port or 587,
        smtp_user=row.smtp_user or row.sender_email or "",
        smtp_pass=PASSWORD_MASK if has_password else "",
        has_password=has_password,
        from_email=row.sender_email or "",
        from_name=row.sender_name or "",
        signer_name=row.signer_name or "",
        signer_title=row.signer_title or "",
        signature_image_url=row.signature_image_url or "",
    )
