"""
Request validation for incoming images.

Both input shapes (multipart upload and base64 data URI) end up as an
`IncomingImage` whose MIME type is one of the allowed types and whose size is
within the configured limit. Anything else raises `ValidationError`.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from io import BytesIO
import logging
import mimetypes
import re
from typing import Optional

from PIL import Image, UnidentifiedImageError

from .config import describe_size_limit
from .errors import ValidationError

logger = logging.getLogger(__name__)

ALLOWED_MIME_TYPES = {"image/jpeg", "image/png"}
MIME_ALIASES = {"image/jpg": "image/jpeg", "image/pjpeg": "image/jpeg", "image/x-png": "image/png"}
# Pillow format name -> MIME type
PIL_FORMATS = {"JPEG": "image/jpeg", "PNG": "image/png"}
GENERIC_CONTENT_TYPES = {"", "application/octet-stream"}

DATA_URI_RE = re.compile(r"^data:image/(png|jpeg|jpg);base64,(.+)$", re.IGNORECASE | re.DOTALL)


@dataclass
class IncomingImage:
    data: bytes
    mime_type: str
    size_bytes: int
    original_name: Optional[str] = None


def normalize_mime_type(value: Optional[str]) -> str:
    """Lower-case, strip parameters (``; charset=...``) and resolve aliases."""
    if not value:
        return ""
    mime = value.split(";", 1)[0].strip().lower()
    return MIME_ALIASES.get(mime, mime)


def _mime_from_filename(filename: Optional[str]) -> str:
    if not filename:
        return ""
    guessed, _ = mimetypes.guess_type(filename.lower())
    return normalize_mime_type(guessed)


def resolve_mime_type(content_type: Optional[str], filename: Optional[str]) -> str:
    """
    Pick the MIME type to gate on.

    The declared content type wins; the file extension is only consulted when
    the client sent nothing useful (missing or ``application/octet-stream``).
    """
    declared = normalize_mime_type(content_type)
    if declared in GENERIC_CONTENT_TYPES:
        return _mime_from_filename(filename) or declared
    return declared


def _check_size(size: int, max_bytes: int) -> None:
    if size > max_bytes:
        raise ValidationError(f"File size exceeds {describe_size_limit(max_bytes)} limit")


def _sniff_format(data: bytes) -> str:
    """Confirm the bytes really decode as JPEG or PNG and return that MIME type."""
    try:
        with Image.open(BytesIO(data)) as image:
            fmt = image.format
            image.verify()
    except Image.DecompressionBombError as exc:
        raise ValidationError("Image dimensions too large") from exc
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as exc:
        raise ValidationError("Invalid image data") from exc
    mime = PIL_FORMATS.get(fmt or "")
    if mime is None:
        raise ValidationError(f"Invalid image data: unsupported format '{fmt}'")
    return mime


def validate_upload(
    data: Optional[bytes],
    content_type: Optional[str],
    filename: Optional[str],
    max_bytes: int,
) -> IncomingImage:
    """Validate a multipart upload and build the `IncomingImage`."""
    if not data:
        raise ValidationError("No file uploaded")

    mime = resolve_mime_type(content_type, filename)
    if mime not in ALLOWED_MIME_TYPES:
        shown = content_type or mime or "unknown"
        raise ValidationError(f"Invalid file type '{shown}'. Only jpg, jpeg, png are allowed.")

    _check_size(len(data), max_bytes)
    actual = _sniff_format(data)
    if actual != mime:
        logger.info("Declared type %s but content is %s; using content type", mime, actual)

    return IncomingImage(data=data, mime_type=actual, size_bytes=len(data), original_name=filename)


def decode_data_uri(value: Optional[str], max_bytes: int) -> IncomingImage:
    """
    Decode ``data:image/<png|jpeg|jpg>;base64,<payload>`` into an `IncomingImage`.

    The encoded length is checked before decoding so an oversized payload is
    rejected without allocating the decoded buffer.
    """
    if not value or not isinstance(value, str):
        raise ValidationError("No image provided")

    match = DATA_URI_RE.match(value.strip())
    if match is None:
        raise ValidationError("Invalid base64 image format")
    subtype, payload = match.group(1), match.group(2)
    payload = "".join(payload.split())

    # base64 inflates by 4/3; anything whose decoded size must exceed the limit fails fast
    if (len(payload) // 4) * 3 - payload.count("=") > max_bytes:
        raise ValidationError(f"File size exceeds {describe_size_limit(max_bytes)} limit")

    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError("Invalid base64 image format") from exc

    if not data:
        raise ValidationError("No image provided")
    _check_size(len(data), max_bytes)

    declared = normalize_mime_type(f"image/{subtype}")
    actual = _sniff_format(data)
    if actual != declared:
        logger.info("Data URI declared %s but content is %s; using content type", declared, actual)
    return IncomingImage(data=data, mime_type=actual, size_bytes=len(data))
