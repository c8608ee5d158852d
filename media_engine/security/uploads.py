"""Raw upload checks applied before a buffer reaches the optimizer."""

from __future__ import annotations

from typing import Final

from media_engine.domain.errors import UploadError

PNG_MAGIC: Final = b"\x89PNG\r\n\x1a\n"
JPEG_SOI: Final = b"\xff\xd8\xff"
GIF_MAGICS: Final = (b"GIF87a", b"GIF89a")
RIFF_MAGIC: Final = b"RIFF"
WEBP_MAGIC: Final = b"WEBP"

ALLOWED_TYPES: Final[frozenset[str]] = frozenset(
    {"image/png", "image/jpeg", "image/webp", "image/gif"}
)


def sniff_media_type(data: bytes) -> str | None:
    """Return detected media type or None if data is not a supported image."""
    if data.startswith(PNG_MAGIC):
        return "image/png"
    if data.startswith(JPEG_SOI):
        return "image/jpeg"
    if data.startswith(RIFF_MAGIC) and data[8:12] == WEBP_MAGIC:
        return "image/webp"
    if data.startswith(GIF_MAGICS):
        return "image/gif"
    return None


def validate_upload(data: bytes, max_upload_bytes: int) -> str:
    """
    Reject oversized or non-image payloads.

    Returns the sniffed media type so callers can log it; the optimizer
    re-encodes everything to WebP regardless.
    """
    if not data:
        raise UploadError("Uploaded file is empty", code="empty_upload", status=400)

    if len(data) > max_upload_bytes:
        megabytes = max(1, round(max_upload_bytes / (1024 * 1024)))
        raise UploadError(
            f"Maximum upload size is {megabytes} MB", code="payload_too_large", status=413
        )

    media_type = sniff_media_type(data)
    if media_type not in ALLOWED_TYPES:
        raise UploadError(
            "Only PNG, JPEG, WebP and GIF images are allowed",
            code="unsupported_media_type",
            status=415,
        )
    return media_type
