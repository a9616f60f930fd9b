"""
Request / response envelopes for the donation receipt API.

All routers produce and consume these Pydantic v2 models.
"""
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import AnyHttpUrl, BaseModel, ConfigDict, EmailStr, Field, field_validator


# ---------------------------------------------------------------------------
# Donations
# ---------------------------------------------------------------------------

class DonationCreate(BaseModel):
    """Public form submission. The proof image is uploaded first."""
    title: str = Field(..., min_length=1, description="นาย | นาง | นางสาว | ...")
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    email: EmailStr
    phone: str = Field(..., min_length=10)
    birth_date: date
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    receipt_url: Optional[str] = Field(default=None, description="Proof-of-payment URL")


class DonationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    first_name: str
    last_name: str
    email: str
    phone: str
    birth_date: date
    amount: float
    receipt_url: Optional[str] = None
    status: str
    pdf_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class DonationSummary(BaseModel):
    pending: int = 0
    approved: int = 0
    rejected: int = 0
    total: int = 0
    approved_amount: float = 0.0


class ApprovalResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    message: str
    email_sent: bool = Field(..., alias="emailSent")
    pdf_url: str = Field(..., alias="pdfUrl")


class ApprovalRequest(BaseModel):
    """Optional approve body; the same logo a preview was rendered with."""
    model_config = ConfigDict(populate_by_name=True)

    logo_base64: Optional[str] = Field(default=None, alias="logoBase64")


class ActionResponse(BaseModel):
    success: bool = True
    message: str


class UploadResponse(BaseModel):
    success: bool = True
    url: str


# ---------------------------------------------------------------------------
# Receipt preview
# ---------------------------------------------------------------------------

class ReceiptPayload(BaseModel):
    """Donation-shaped snapshot; may come from unsaved form state."""
    id: str = Field(..., min_length=1)
    title: str = ""
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""
    birth_date: Optional[date] = None
    amount: Decimal = Field(..., ge=0)
    status: str = "pending"
    created_at: Optional[datetime] = None


class PreviewRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    donation: ReceiptPayload
    logo_base64: Optional[str] = Field(default=None, alias="logoBase64")


# ---------------------------------------------------------------------------
# Email settings
# ---------------------------------------------------------------------------

class EmailSettingsUpdate(BaseModel):
    smtp_host: str = Field(..., min_length=1)
    smtp_port: int = Field(..., ge=1, le=65535)
    smtp_user: EmailStr
    smtp_pass: str = Field(..., min_length=1)
    from_email: EmailStr
    from_name: str = Field(..., min_length=1)
    signer_name: Optional[str] = None
    signer_title: Optional[str] = None
    signature_image_url: Optional[AnyHttpUrl] = None

    @field_validator("signer_name", "signer_title", "signature_image_url", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


class EmailSettingsResponse(BaseModel):
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_pass: str = Field(default="", description="Masked; never the stored secret")
    has_password: bool = False
    from_email: str = ""
    from_name: str = ""
    signer_name: str = ""
    signer_title: str = ""
    signature_image_url: str = ""
