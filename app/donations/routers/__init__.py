"""
HTTP routers. Shared upload handling and validation-error formatting live here.
"""
from fastapi import HTTPException, UploadFile
from pydantic import ValidationError

from app.donations.pipeline import storage


def field_errors(err: ValidationError) -> dict[str, list[str]]:
    """Pydantic errors keyed by field name, for 400 responses."""
    errors: dict[str, list[str]] = {}
    for item in err.errors(include_url=False):
        name = ".".join(str(p) for p in item["loc"]) or "__root__"
        errors.setdefault(name, []).append(item["msg"])
    return errors


async def store_upload(file: UploadFile, prefix: str, allowed: set[str]) -> str:
    """Validate and store an uploaded file; returns its public URL."""
    ext = storage.file_extension(file.filename or "", default="")
    if ext not in allowed:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported file type '{ext or '?'}'; allowed: {', '.join(sorted(allowed))}",
        )
    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail="file is empty")
    if len(data) > storage.MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="file is too large")

    key = storage.store_bytes(
        storage.upload_key(prefix, file.filename or ""),
        data,
        file.content_type or storage.content_type_for(ext),
    )
    return storage.get_public_url(key)
