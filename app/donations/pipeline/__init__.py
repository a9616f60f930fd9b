"""
Donation receipt pipeline.

Approval orchestrates: fetch → guard → render PDF → upload → update record →
e-mail donor. Everything before the record update is free of side effects on
the donation row, and the upload key is deterministic, so any aborted
approval can simply be retried.
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.donations.models.donation import (
    STATUS_APPROVED,
    STATUS_PENDING,
    STATUS_REJECTED,
    DonationModel,
)
from app.donations.pipeline import storage
from app.donations.pipeline.errors import (
    AlreadyApproved,
    DonationNotFound,
    InvalidTransition,
    PipelineError,
)
from app.donations.pipeline.mailer import send_receipt_email
from app.donations.pipeline.receipt_renderer import ReceiptRenderer, render_receipt_pdf
from app.donations.pipeline.settings_store import get_email_settings

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    STATUS_PENDING: frozenset({STATUS_APPROVED, STATUS_REJECTED}),
    STATUS_APPROVED: frozenset(),
    STATUS_REJECTED: frozenset(),
}

MSG_APPROVED_SENT = "Donation approved and receipt sent successfully"
MSG_APPROVED_NOT_SENT = "Donation approved successfully (email not sent - configure email in Settings)"


class ApprovalResult(BaseModel):
    success: bool = True
    message: str
    email_sent: bool
    pdf_url: str


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def get_donation(db: Session, donation_id: str) -> DonationModel:
    try:
        row = db.get(DonationModel, donation_id)
    except SQLAlchemyError as e:
        logger.error("Donation fetch error for %s: %s", donation_id, e)
        raise PipelineError(f"Database error: {e}", step="fetch") from e
    if row is None:
        logger.warning("Donation not found: %s", donation_id)
        raise DonationNotFound(donation_id)
    return row


def check_transition(donation: DonationModel, target: str) -> None:
    current = donation.status
    if current == STATUS_APPROVED and target == STATUS_APPROVED:
        raise AlreadyApproved(donation.id)
    if target not in ALLOWED_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransition(donation.id, current, target)


def _load_settings_row(db: Optional[Session]):
    if db is None:
        return None
    try:
        return get_email_settings(db)
    except SQLAlchemyError as e:
        logger.warning("Email settings unavailable, rendering without signer: %s", e)
        return None


def _conditional_status_update(
    db: Session, donation_id: str, expected: str, values: dict, step: str
) -> None:
    """Write ``values`` only if the row still has status ``expected``."""
    try:
        matched = (
            db.query(DonationModel)
            .filter(DonationModel.id == donation_id, DonationModel.status == expected)
            .update(values, synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Donation update failed for %s: %s", donation_id, e)
        raise PipelineError(f"Database error: {e}", step=step) from e

    if matched:
        return

    # Someone else moved the row between our read and our write
    db.expire_all()
    current = db.get(DonationModel, donation_id)
    if current is None:
        raise DonationNotFound(donation_id)
    if current.status == STATUS_APPROVED:
        raise AlreadyApproved(donation_id)
    raise InvalidTransition(donation_id, current.status, values["status"])


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------

async def _issue_receipt(
    db: Session,
    donation_id: str,
    logo: Optional[str],
    renderer: Optional[ReceiptRenderer],
) -> tuple[DonationModel, bytes, str]:
    logger.info("Approval start — fetch %s", donation_id)
    donation = get_donation(db, donation_id)

    logger.info("Approval — guard (status=%s)", donation.status)
    check_transition(donation, STATUS_APPROVED)

    logger.info("Approval — render")
    pdf_bytes = await render_receipt_pdf(
        donation, settings_row=_load_settings_row(db), logo=logo, renderer=renderer
    )

    logger.info("Approval — upload")
    # boto3 and disk writes block; keep them off the loop so the deadline applies
    key = await asyncio.to_thread(
        storage.store_bytes, storage.receipt_key(donation_id), pdf_bytes, "application/pdf"
    )
    pdf_url = storage.get_public_url(key)

    logger.info("Approval — update record")
    _conditional_status_update(
        db,
        donation_id,
        expected=STATUS_PENDING,
        values={"status": STATUS_APPROVED, "pdf_url": pdf_url, "updated_at": datetime.utcnow()},
        step="update",
    )
    return donation, pdf_bytes, pdf_url


async def approve_donation(
    db: Session,
    donation_id: str,
    logo: Optional[str] = None,
    renderer: Optional[ReceiptRenderer] = None,
    timeout: Optional[float] = None,
) -> ApprovalResult:
    """Approve a pending donation and issue its receipt.

    Raises a ``PipelineError`` subclass for every fatal step. E-mail failure
    is not fatal: the result carries ``email_sent=False`` instead.
    """
    try:
        donation, pdf_bytes, pdf_url = await asyncio.wait_for(
            _issue_receipt(db, donation_id, logo, renderer),
            timeout=timeout or settings.APPROVAL_TIMEOUT,
        )
    except asyncio.TimeoutError as e:
        logger.error("Approval of %s timed out", donation_id)
        raise PipelineError("Approval timed out", step="approval_process") from e

    logger.info("Approval — notify %s", donation.email)
    receipt_number = donation_id[:8].upper()
    recipient_name = f"{donation.title} {donation.first_name} {donation.last_name}"
    email_sent = await send_receipt_email(
        donation.email, recipient_name, pdf_bytes, receipt_number, db=db
    )
    if not email_sent:
        logger.warning("Donation %s approved but receipt e-mail not sent", donation_id)

    return ApprovalResult(
        success=True,
        message=MSG_APPROVED_SENT if email_sent else MSG_APPROVED_NOT_SENT,
        email_sent=email_sent,
        pdf_url=pdf_url,
    )


def reject_donation(db: Session, donation_id: str) -> DonationModel:
    donation = get_donation(db, donation_id)
    if donation.status == STATUS_REJECTED:
        logger.info("Donation %s already rejected", donation_id)
        return donation
    check_transition(donation, STATUS_REJECTED)

    _conditional_status_update(
        db,
        donation_id,
        expected=donation.status,
        values={"status": STATUS_REJECTED, "updated_at": datetime.utcnow()},
        step="update",
    )
    logger.info("Rejected donation %s", donation_id)
    db.refresh(donation)
    return donation


def delete_donation(db: Session, donation_id: str) -> None:
    """Remove the record. Stored proof / receipt files are left in place."""
    donation = get_donation(db, donation_id)
    orphans = [u for u in (donation.receipt_url, donation.pdf_url) if u]
    try:
        db.delete(donation)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Delete error for %s: %s", donation_id, e)
        raise PipelineError(f"Database error: {e}", step="delete") from e
    logger.info("Deleted donation %s (orphaned files: %s)", donation_id, orphans or "none")


async def preview_receipt(
    payload: Any,
    db: Optional[Session] = None,
    logo: Optional[str] = None,
    renderer: Optional[ReceiptRenderer] = None,
) -> bytes:
    """Render without storing, updating or e-mailing anything."""
    logger.info("Preview receipt for %s", payload.id)
    return await render_receipt_pdf(
        payload, settings_row=_load_settings_row(db), logo=logo, renderer=renderer
    )
