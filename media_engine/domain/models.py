"""
Domain models for the media engine.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

QUALITY_STEPS = (85, 80, 75, 70, 65, 60, 55, 50, 45)
WIDTH_STEPS = (2400, 2000, 1800, 1600, 1400, 1200, 1000, 800, 600)
DEFAULT_MAX_IMAGE_BYTES = 1024 * 1024
DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024
DEFAULT_STAGING_DIRS = ("_tmp", "products/_tmp")
DEFAULT_MAX_AGE_HOURS = 12.0
DEFAULT_SCHEDULE_HOURS = (0, 12)  # midnight + noon, local time


def _split_csv(value: Any) -> Any:
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return value


def normalize_schedule_hours(hours: Optional[Iterable[Any]]) -> List[int]:
    """Deduplicate, clamp to 0-23 and sort; fall back to the default schedule."""
    normalized = set()
    for value in hours or ():
        try:
            normalized.add(max(0, min(23, int(value))))
        except (TypeError, ValueError):
            continue
    return sorted(normalized) or list(DEFAULT_SCHEDULE_HOURS)


class EngineSettings(BaseModel):
    """Immutable configuration handed to every engine component."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    storage_root: Path = Path("./var/uploads")
    max_image_bytes: int = Field(default=DEFAULT_MAX_IMAGE_BYTES, gt=0)
    max_upload_bytes: int = Field(default=DEFAULT_MAX_UPLOAD_BYTES, gt=0)
    quality_ladder: tuple[int, ...] = QUALITY_STEPS
    width_ladder: tuple[int, ...] = WIDTH_STEPS
    staging_dirs: tuple[str, ...] = DEFAULT_STAGING_DIRS
    cleanup_max_age_hours: float = Field(default=DEFAULT_MAX_AGE_HOURS, gt=0)
    cleanup_schedule_hours: tuple[int, ...] = DEFAULT_SCHEDULE_HOURS
    cleanup_enabled: bool = True

    @field_validator(
        "quality_ladder",
        "width_ladder",
        "staging_dirs",
        "cleanup_schedule_hours",
        mode="before",
    )
    @classmethod
    def split_comma_separated(cls, value: Any) -> Any:
        return _split_csv(value)

    @field_validator("quality_ladder")
    @classmethod
    def validate_quality_ladder(cls, value: tuple[int, ...]) -> tuple[int, ...]:
        if not value:
            raise ValueError("Quality ladder must not be empty")
        if any(q < 1 or q > 100 for q in value):
            raise ValueError("Quality levels must be between 1 and 100")
        return tuple(sorted(set(value), reverse=True))

    @field_validator("width_ladder")
    @classmethod
    def validate_width_ladder(cls, value: tuple[int, ...]) -> tuple[int, ...]:
        if not value:
            raise ValueError("Width ladder must not be empty")
        if any(w <= 0 for w in value):
            raise ValueError("Widths must be positive")
        return tuple(sorted(set(value), reverse=True))

    @field_validator("staging_dirs")
    @classmethod
    def validate_staging_dirs(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        cleaned = tuple(d.replace("\\", "/").strip().strip("/") for d in value)
        if not cleaned or any(not d for d in cleaned):
            raise ValueError("Staging directories must be non-empty relative paths")
        return cleaned

    @field_validator("cleanup_schedule_hours")
    @classmethod
    def validate_schedule_hours(cls, value: tuple[int, ...]) -> tuple[int, ...]:
        return tuple(normalize_schedule_hours(value))

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EngineSettings":
        """Build settings from ``MEDIA_*`` / ``TMP_UPLOAD_CLEANUP_*`` variables."""
        env = os.environ if environ is None else environ
        mapping = {
            "MEDIA_STORAGE_ROOT": "storage_root",
            "MEDIA_MAX_IMAGE_BYTES": "max_image_bytes",
            "MEDIA_MAX_UPLOAD_BYTES": "max_upload_bytes",
            "MEDIA_QUALITY_LADDER": "quality_ladder",
            "MEDIA_WIDTH_LADDER": "width_ladder",
            "MEDIA_STAGING_DIRS": "staging_dirs",
            "TMP_UPLOAD_CLEANUP_MAX_AGE_HOURS": "cleanup_max_age_hours",
            "TMP_UPLOAD_CLEANUP_SCHEDULE_HOURS": "cleanup_schedule_hours",
        }
        values: dict[str, Any] = {
            attr: env[name] for name, attr in mapping.items() if env.get(name)
        }
        enabled = env.get("TMP_UPLOAD_CLEANUP_ENABLED")
        if enabled is not None:
            values["cleanup_enabled"] = enabled.strip().lower() != "false"
        return cls(**values)


@dataclass(frozen=True, slots=True)
class OptimizedImage:
    """Encoded asset produced by the optimizer."""

    data: bytes
    width: int
    height: int
    quality: int
    resized: bool
    media_type: str = "image/webp"
    extension: str = ".webp"

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True, slots=True)
class StoredAsset:
    """Result descriptor returned once an asset is committed to disk."""

    logical_path: str
    url: str
    path: Path
    size: int
    width: int
    height: int
    quality: int


@dataclass(frozen=True, slots=True)
class Discarded:
    """Outcome of a best-effort operation whose error is intentionally dropped."""

    ok: bool
    error: Optional[BaseException] = None

    @classmethod
    def success(cls) -> "Discarded":
        return cls(True)

    @classmethod
    def failure(cls, error: BaseException) -> "Discarded":
        return cls(False, error)


@dataclass(slots=True)
class CleanupStats:
    """Aggregate counters for one cleanup run."""

    scanned_files: int = 0
    deleted_files: int = 0
    deleted_bytes: int = 0
    deleted_dirs: int = 0
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "scanned_files": self.scanned_files,
            "deleted_files": self.deleted_files,
            "deleted_bytes": self.deleted_bytes,
            "deleted_dirs": self.deleted_dirs,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }
