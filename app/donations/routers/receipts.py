"""
Receipt preview.

POST /api/receipts/preview — render a donation snapshot to PDF, persist nothing
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.donations.database import get_db
from app.donations.pipeline import preview_receipt
from app.donations.pipeline.receipt_renderer import ReceiptRenderer, get_renderer
from app.donations.schemas import PreviewRequest

logger = logging.getLogger(__name__)
router = APIRouter()


# ── POST /api/receipts/preview ───────────────────────────────────────────
@router.post("/receipts/preview")
async def preview(
    body: dict = Body(...),
    db: Session = Depends(get_db),
    renderer: ReceiptRenderer = Depends(get_renderer),
):
    if not body.get("donation"):
        return JSONResponse(status_code=400, content={"error": "donation payload is required"})
    try:
        req = PreviewRequest.model_validate(body)
    except ValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(p) for p in item['loc'])}: {item['msg']}"
            for item in e.errors(include_url=False)
        )
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid donation payload", "details": details},
        )

    pdf = await preview_receipt(req.donation, db=db, logo=req.logo_base64, renderer=renderer)
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Cache-Control": "no-store"},
    )
