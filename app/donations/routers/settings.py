"""
Email / signer settings.

GET  /api/settings/email      — current settings (password masked)
POST /api/settings/email      — validate and save the singleton row
POST /api/settings/signature  — upload a signature image, returns its URL
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Body, Depends, File, UploadFile
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.donations.database import get_db
from app.donations.pipeline.settings_store import (
    get_email_settings,
    save_email_settings,
    to_response,
)
from app.donations.pipeline.storage import ALLOWED_IMAGE_EXTENSIONS
from app.donations.routers import field_errors, store_upload
from app.donations.schemas import EmailSettingsUpdate, UploadResponse

logger = logging.getLogger(__name__)
router = APIRouter()


# ── GET /api/settings/email ──────────────────────────────────────────────
@router.get("/settings/email")
def read_email_settings(db: Session = Depends(get_db)):
    try:
        row = get_email_settings(db)
    except SQLAlchemyError as e:
        logger.error("GET /settings/email error: %s", e)
        return JSONResponse(status_code=500, content={"success": False, "error": str(e)})
    data = to_response(row)
    return {"success": True, "data": data.model_dump() if data else None}


# ── POST /api/settings/email ─────────────────────────────────────────────
@router.post("/settings/email")
def write_email_settings(body: dict = Body(...), db: Session = Depends(get_db)):
    try:
        req = EmailSettingsUpdate.model_validate(body)
    except ValidationError as e:
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": {"fieldErrors": field_errors(e)}},
        )

    try:
        save_email_settings(db, req)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("POST /settings/email write error: %s", e)
        return JSONResponse(status_code=500, content={"success": False, "error": str(e)})
    return {"success": True}


# ── POST /api/settings/signature ─────────────────────────────────────────
@router.post("/settings/signature", response_model=UploadResponse)
async def upload_signature(file: UploadFile = File(...)):
    url = await store_upload(file, "signatures", ALLOWED_IMAGE_EXTENSIONS)
    logger.info("Stored signature image %s", url)
    return UploadResponse(url=url)
