"""Exception hierarchy raised by the media engine."""

from __future__ import annotations


class MediaError(Exception):
    """Base domain exception carrying a stable code and an HTTP status hint."""

    code = "media_error"
    status = 500

    def __init__(self, message: str, *, code: str | None = None, status: int | None = None):
        self.message = message
        if code is not None:
            self.code = code
        if status is not None:
            self.status = status
        super().__init__(message)


class InvalidPathError(MediaError):
    """A logical path resolves outside the storage root."""

    code = "invalid_path"
    status = 400

    def __init__(self, path: str, reason: str = "Path escapes the storage root"):
        self.path = path
        super().__init__(f"{reason}: {path!r}")


class OptimizationFailedError(MediaError):
    """No point of the quality x width grid fits the byte budget."""

    code = "image_too_large"
    status = 422

    def __init__(self, max_bytes: int, message: str | None = None, **kwargs):
        self.max_bytes = max_bytes
        if message is None:
            megabytes = max(1, round(max_bytes / (1024 * 1024)))
            message = (
                f"Unable to optimize image under {megabytes}MB. "
                "Please upload a smaller image."
            )
        super().__init__(message, **kwargs)


class IOFailureError(MediaError):
    """Underlying filesystem failure. The wrapped ``OSError`` is kept as ``__cause__``."""

    code = "io_failure"
    status = 500


class UploadError(MediaError):
    """Raw upload rejected before any decoding happens."""

    code = "invalid_upload"
    status = 400
