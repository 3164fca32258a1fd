import logging
import os
import random
import time
from typing import Optional

from fastapi import HTTPException, UploadFile

from config import MAX_UPLOAD_BYTES, UPLOAD_DIR
from schemas import MediaType, UploadedFile

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


def ensure_upload_dir(path: str = UPLOAD_DIR) -> str:
    os.makedirs(path, exist_ok=True)
    return path


def media_type_for(mime_type: str) -> MediaType:
    return MediaType.video if mime_type.startswith("video/") else MediaType.image


def check_mime_type(upload: UploadFile) -> str:
    mime_type = upload.content_type or ""
    if not (mime_type.startswith("image/") or mime_type.startswith("video/")):
        raise HTTPException(status_code=400, detail="Only images and videos are allowed")
    return mime_type


def unique_filename(field_name: str, original_name: Optional[str]) -> str:
    _, ext = os.path.splitext(os.path.basename(original_name or ""))
    suffix = f"{int(time.time() * 1000)}-{random.randint(0, 10**9)}"
    return f"{field_name}-{suffix}{ext.lower()}"


def save_upload(upload: UploadFile, product_id: str, field_name: str = "file",
                upload_dir: str = UPLOAD_DIR, max_bytes: int = MAX_UPLOAD_BYTES) -> UploadedFile:
    """Write an upload to disk and describe it for the uploaded_file collection."""
    mime_type = check_mime_type(upload)
    ensure_upload_dir(upload_dir)
    filename = unique_filename(field_name, upload.filename)
    path = os.path.join(upload_dir, filename)

    size = 0
    with open(path, "wb") as out:
        while True:
            chunk = upload.file.read(CHUNK_SIZE)
            if not chunk:
                break
            size += len(chunk)
            if size > max_bytes:
                break
            out.write(chunk)
    if size > max_bytes:
        remove_file(path)
        raise HTTPException(status_code=413, detail="File too large")

    logger.info("Stored upload %s (%d bytes) for product %s", filename, size, product_id)
    return UploadedFile(
        filename=filename,
        original_name=upload.filename or filename,
        mime_type=mime_type,
        size=size,
        path=path,
        url=f"/uploads/{filename}",
        product_id=product_id,
        type=media_type_for(mime_type),
    )


def remove_file(path: Optional[str]) -> bool:
    """Remove a stored file; a missing or locked file is logged, not raised."""
    if not path:
        return False
    try:
        os.remove(path)
        return True
    except OSError as e:
        logger.warning("Could not remove file %s: %s", path, e)
        return False
