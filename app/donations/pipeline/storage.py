"""
Object storage for proof images, signature images and receipt PDFs.

Two backends: ``local`` (files under LOCAL_STORAGE_PATH, served from
``/files``) and ``s3``. Keys are bucket-relative paths such as
``receipts/receipt-<donation id>.pdf``; writing an existing key overwrites it.
"""
from __future__ import annotations

import io
import logging
import os
import posixpath
import uuid

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from app.config import settings
from app.donations.pipeline.errors import StorageError

logger = logging.getLogger(__name__)

LOCAL_URL_PREFIX = "/files"


def receipt_key(donation_id: str) -> str:
    """Deterministic key so re-running an approval overwrites, not accumulates."""
    return f"receipts/receipt-{donation_id}.pdf"


def _get_storage_backend() -> str:
    return settings.STORAGE_BACKEND


def _get_local_storage_path() -> str:
    path = settings.LOCAL_STORAGE_PATH
    os.makedirs(path, exist_ok=True)
    return path


def _get_s3_client():
    return boto3.client(
        "s3",
        region_name=settings.S3_REGION,
        aws_access_key_id=settings.AWS_ACCESS_KEY_ID or None,
        aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY or None,
    )


def _normalize_key(key: str) -> str:
    norm = posixpath.normpath(key.lstrip("/"))
    if norm.startswith("..") or norm in ("", "."):
        raise StorageError(f"Invalid storage key: {key!r}")
    return norm


def store_bytes(key: str, data: bytes, content_type: str) -> str:
    """Write ``data`` at ``key`` (upsert). Returns the normalized key."""
    key = _normalize_key(key)
    backend = _get_storage_backend()
    try:
        if backend == "s3":
            _get_s3_client().upload_fileobj(
                io.BytesIO(data),
                settings.S3_BUCKET,
                key,
                ExtraArgs={"ContentType": content_type},
            )
        else:
            path = os.path.join(_get_local_storage_path(), key)
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, "wb") as f:
                f.write(data)
    except (OSError, BotoCoreError, ClientError) as e:
        logger.error("Storage write failed for %s: %s", key, e)
        raise StorageError(f"Could not store {key}: {e}") from e

    logger.info("Stored %s (%d bytes, backend=%s)", key, len(data), backend)
    return key


def get_public_url(key: str) -> str:
    key = _normalize_key(key)
    if _get_storage_backend() == "s3":
        base = settings.S3_PUBLIC_BASE_URL or (
            f"https://{settings.S3_BUCKET}.s3.{settings.S3_REGION}.amazonaws.com"
        )
        return f"{base.rstrip('/')}/{key}"
    return f"{settings.PUBLIC_BASE_URL.rstrip('/')}{LOCAL_URL_PREFIX}/{key}"


# ---------------------------------------------------------------------------
# Uploads
# ---------------------------------------------------------------------------

ALLOWED_IMAGE_EXTENSIONS = {"png", "jpg", "jpeg", "webp", "gif"}
ALLOWED_PROOF_EXTENSIONS = ALLOWED_IMAGE_EXTENSIONS | {"pdf"}
MAX_UPLOAD_BYTES = 10 * 1024 * 1024

_CONTENT_TYPES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "webp": "image/webp",
    "gif": "image/gif",
    "pdf": "application/pdf",
}


def file_extension(filename: str, default: str = "png") -> str:
    _, _, ext = (filename or "").rpartition(".")
    return ext.lower() if ext and ext != filename else default


def content_type_for(ext: str) -> str:
    return _CONTENT_TYPES.get(ext, "application/octet-stream")


def upload_key(prefix: str, filename: str) -> str:
    """``<prefix>/<uuid>.<ext>``; uploads never overwrite each other."""
    return f"{prefix}/{uuid.uuid4()}.{file_extension(filename)}"
