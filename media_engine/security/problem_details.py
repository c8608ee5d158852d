"""RFC 7807 problem-details responses for engine errors."""

from __future__ import annotations

import secrets
from typing import Any, Mapping

from fastapi.responses import JSONResponse

from media_engine.domain.errors import (
    InvalidPathError,
    IOFailureError,
    MediaError,
    OptimizationFailedError,
    UploadError,
)

DEFAULT_TYPE = "about:blank"
CORRELATION_HEADER = "X-Correlation-ID"

_TITLES: tuple[tuple[type[MediaError], str], ...] = (
    (InvalidPathError, "Invalid path"),
    (OptimizationFailedError, "Image too large"),
    (IOFailureError, "Storage failure"),
    (UploadError, "Invalid upload"),
)


def new_correlation_id() -> str:
    return secrets.token_urlsafe(16)


def title_for(exc: MediaError) -> str:
    if exc.code == "asset_not_found":
        return "Asset not found"
    if exc.code == "unsupported_image":
        return "Unsupported image"
    for error_type, title in _TITLES:
        if isinstance(exc, error_type):
            return title
    return "Media error"


def problem_response(
    *,
    status: int,
    title: str,
    detail: str,
    code: str,
    correlation_id: str | None = None,
    instance: str | None = None,
    extras: Mapping[str, Any] | None = None,
    headers: Mapping[str, str] | None = None,
) -> JSONResponse:
    """
    Produce an RFC 7807 compliant JSON response.

    The correlation id is mirrored in the ``X-Correlation-ID`` header so that
    clients can trace the error end-to-end.
    """
    cid = correlation_id or new_correlation_id()
    payload: dict[str, Any] = {
        "type": DEFAULT_TYPE,
        "title": title,
        "status": status,
        "detail": detail,
        "code": code,
        "correlation_id": cid,
    }
    if instance:
        payload["instance"] = instance
    if extras:
        payload.update(extras)

    response_headers = dict(headers or {})
    response_headers.setdefault(CORRELATION_HEADER, cid)
    return JSONResponse(status_code=status, content=payload, headers=response_headers)


def media_error_response(
    exc: MediaError,
    *,
    correlation_id: str | None = None,
    instance: str | None = None,
) -> JSONResponse:
    """Map a :class:`MediaError` onto a problem-details response."""
    extras: dict[str, Any] = {}
    if isinstance(exc, OptimizationFailedError):
        extras["max_bytes"] = exc.max_bytes
    detail = exc.message
    if isinstance(exc, IOFailureError) and exc.status >= 500:
        # Never leak filesystem details to clients.
        detail = "Storage operation failed"
    return problem_response(
        status=exc.status,
        title=title_for(exc),
        detail=detail,
        code=exc.code,
        correlation_id=correlation_id,
        instance=instance,
        extras=extras,
    )
