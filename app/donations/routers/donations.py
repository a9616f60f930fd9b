"""
Donation endpoints.

POST   /api/donations                 — public submission (status pending)
POST   /api/donations/upload-proof    — store a payment-proof file
GET    /api/donations                 — admin list (status / search filters)
GET    /api/donations/summary         — dashboard counters
GET    /api/donations/{id}            — one donation
POST   /api/donations/{id}/approve    — approval pipeline
POST   /api/donations/{id}/reject     — mark rejected
DELETE /api/donations/{id}            — delete the record
"""
from __future__ import annotations

import logging
import uuid
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, File, Query, UploadFile
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from app.donations.database import get_db
from app.donations.models.donation import (
    STATUS_APPROVED,
    STATUS_PENDING,
    STATUS_REJECTED,
    DonationModel,
)
from app.donations.pipeline import (
    approve_donation,
    delete_donation,
    get_donation,
    reject_donation,
)
from app.donations.pipeline.receipt_renderer import ReceiptRenderer, get_renderer
from app.donations.pipeline.storage import ALLOWED_PROOF_EXTENSIONS
from app.donations.routers import field_errors, store_upload
from app.donations.schemas import (
    ActionResponse,
    ApprovalRequest,
    ApprovalResponse,
    DonationCreate,
    DonationResponse,
    DonationSummary,
    UploadResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter()

STATUSES = (STATUS_PENDING, STATUS_APPROVED, STATUS_REJECTED)


# ── POST /api/donations ──────────────────────────────────────────────────
@router.post("/donations", response_model=DonationResponse, status_code=201)
def create_donation(body: dict = Body(...), db: Session = Depends(get_db)):
    try:
        req = DonationCreate.model_validate(body)
    except ValidationError as e:
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": {"fieldErrors": field_errors(e)}},
        )

    record = DonationModel(
        id=str(uuid.uuid4()),
        title=req.title.strip(),
        first_name=req.first_name.strip(),
        last_name=req.last_name.strip(),
        email=str(req.email),
        phone=req.phone.strip(),
        birth_date=req.birth_date,
        amount=req.amount,
        receipt_url=req.receipt_url,
        status=STATUS_PENDING,
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    logger.info("Stored donation %s (amount=%s)", record.id, record.amount)
    return record


# ── POST /api/donations/upload-proof ─────────────────────────────────────
@router.post("/donations/upload-proof", response_model=UploadResponse)
async def upload_proof(file: UploadFile = File(...)):
    url = await store_upload(file, "proofs", ALLOWED_PROOF_EXTENSIONS)
    logger.info("Stored payment proof %s", url)
    return UploadResponse(url=url)


# ── GET /api/donations ───────────────────────────────────────────────────
@router.get("/donations", response_model=List[DonationResponse])
def list_donations(
    status: Optional[str] = Query(default=None, pattern="^(pending|approved|rejected)$"),
    search: Optional[str] = None,
    db: Session = Depends(get_db),
):
    query = db.query(DonationModel)
    if status:
        query = query.filter(DonationModel.status == status)
    if search and search.strip():
        term = f"%{search.strip().lower()}%"
        query = query.filter(
            or_(
                func.lower(DonationModel.first_name).like(term),
                func.lower(DonationModel.last_name).like(term),
                func.lower(DonationModel.email).like(term),
                DonationModel.phone.like(term),
            )
        )
    rows = query.order_by(DonationModel.created_at.desc()).all()
    logger.info("Found %d donations (status=%s, search=%r)", len(rows), status, search)
    return rows


# ── GET /api/donations/summary ───────────────────────────────────────────
@router.get("/donations/summary", response_model=DonationSummary)
def donation_summary(db: Session = Depends(get_db)):
    counts = dict(
        db.query(DonationModel.status, func.count(DonationModel.id))
        .group_by(DonationModel.status)
        .all()
    )
    approved_amount = (
        db.query(func.coalesce(func.sum(DonationModel.amount), 0))
        .filter(DonationModel.status == STATUS_APPROVED)
        .scalar()
    )
    return DonationSummary(
        pending=counts.get(STATUS_PENDING, 0),
        approved=counts.get(STATUS_APPROVED, 0),
        rejected=counts.get(STATUS_REJECTED, 0),
        total=sum(counts.get(s, 0) for s in STATUSES),
        approved_amount=float(approved_amount or 0),
    )


# ── GET /api/donations/{donation_id} ─────────────────────────────────────
@router.get("/donations/{donation_id}", response_model=DonationResponse)
def get_donation_detail(donation_id: str, db: Session = Depends(get_db)):
    return get_donation(db, donation_id)


# ── POST /api/donations/{donation_id}/approve ────────────────────────────
@router.post("/donations/{donation_id}/approve", response_model=ApprovalResponse)
async def approve(
    donation_id: str,
    body: Optional[ApprovalRequest] = None,
    db: Session = Depends(get_db),
    renderer: ReceiptRenderer = Depends(get_renderer),
):
    logo = body.logo_base64 if body else None
    result = await approve_donation(db, donation_id, logo=logo, renderer=renderer)
    return ApprovalResponse(
        success=result.success,
        message=result.message,
        email_sent=result.email_sent,
        pdf_url=result.pdf_url,
    )


# ── POST /api/donations/{donation_id}/reject ─────────────────────────────
@router.post("/donations/{donation_id}/reject", response_model=ActionResponse)
def reject(donation_id: str, db: Session = Depends(get_db)):
    reject_donation(db, donation_id)
    return ActionResponse(message="Donation rejected")


# ── DELETE /api/donations/{donation_id} ──────────────────────────────────
@router.delete("/donations/{donation_id}", response_model=ActionResponse)
def delete(donation_id: str, db: Session = Depends(get_db)):
    delete_donation(db, donation_id)
    return ActionResponse(message="Donation deleted successfully")
