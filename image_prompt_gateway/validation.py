"""
Validation of inbound image uploads.

Provides:
- Content type allow-list and size ceiling checks
- Reading a multipart upload into an UploadedAsset
- Parsing the prompt style form field
"""

from __future__ import annotations

from typing import Optional

from fastapi import UploadFile

from .errors import ValidationError
from .models import PromptStyle, UploadedAsset

ALLOWED_CONTENT_TYPES = frozenset({"image/jpeg", "image/jpg", "image/png", "image/webp"})
DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024
READ_CHUNK_SIZE = 1024 * 1024


def _format_megabytes(size: int) -> str:
    megabytes = size / (1024 * 1024)
    return f"{megabytes:g}MB"


def check_content_type(content_type: Optional[str]) -> str:
    """
    Normalize and check the declared media type.

    Raises:
        ValidationError: Type is missing or not in the allow-list
    """
    normalized = (content_type or "").split(";")[0].strip().lower()
    if normalized not in ALLOWED_CONTENT_TYPES:
        raise ValidationError(
            f"unsupported file type '{content_type or 'unknown'}', "
            "please upload a JPEG, PNG or WebP image"
        )
    return normalized


def check_size(size: int, max_bytes: int = DEFAULT_MAX_UPLOAD_BYTES) -> None:
    if size > max_bytes:
        raise ValidationError(f"file too large, size must not exceed {_format_megabytes(max_bytes)}")


async def read_upload(
    file: Optional[UploadFile],
    max_bytes: int = DEFAULT_MAX_UPLOAD_BYTES,
) -> UploadedAsset:
    """
    Validate a multipart upload and read it into memory.

    The type is checked before any bytes are read and the size ceiling is
    enforced while reading, so oversized bodies are never fully buffered.

    Args:
        file: Uploaded file (multipart) or None if the field was absent
        max_bytes: Size ceiling in bytes

    Returns:
        UploadedAsset with the raw bytes

    Raises:
        ValidationError: Missing file, unsupported type or oversized payload
    """
    if file is None or not file.filename:
        raise ValidationError("no image file provided, please choose an image to upload")

    content_type = check_content_type(file.content_type)

    declared_size = getattr(file, "size", None)
    if declared_size is not None:
        check_size(declared_size, max_bytes)

    buffer = bytearray()
    while True:
        chunk = await file.read(READ_CHUNK_SIZE)
        if not chunk:
            break
        buffer.extend(chunk)
        check_size(len(buffer), max_bytes)

    if not buffer:
        raise ValidationError("no image file provided, the uploaded file is empty")

    return UploadedAsset(
        content=bytes(buffer),
        content_type=content_type,
        size=len(buffer),
        filename=file.filename,
    )


def parse_prompt_style(raw: Optional[str]) -> PromptStyle:
    """
    Parse the prompt style form field.

    Args:
        raw: Form field value; None or blank selects the general style

    Returns:
        Matching PromptStyle

    Raises:
        ValidationError: Value is not a known style
    """
    if raw is None or not raw.strip():
        return PromptStyle.GENERAL
    try:
        return PromptStyle(raw.strip().lower())
    except ValueError as e:
        allowed = ", ".join(style.value for style in PromptStyle)
        raise ValidationError(f"unsupported prompt type '{raw}', expected one of: {allowed}") from e
