"""
Singleton outbound-email / receipt-signer configuration.
"""
from sqlalchemy import Column, DateTime, Integer, String, Text
from datetime import datetime
from app.donations.database import Base

SETTINGS_KEY = "default"


class EmailSettingsModel(Base):
    """At most one row, keyed by SETTINGS_KEY."""
    __tablename__ = "email_settings"

    id = Column(String, primary_key=True, default=SETTINGS_KEY)

    sender_email = Column(String)
    sender_name = Column(String)
    smtp_host = Column(String)
    smtp_port = Column(Integer)
    smtp_user = Column(String)
    smtp_password_encrypted = Column(Text)  # Fernet token, never plain text

    # Receipt signature block (optional)
    signer_name = Column(String)
    signer_title = Column(String)
    signature_image_url = Column(String)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
