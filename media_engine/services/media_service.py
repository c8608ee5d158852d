"""
Media storage service: optimize -> sandbox -> durable write.
"""

import logging
import re
import time
import uuid
from typing import Optional

from media_engine.adapters.filesystem import DurableWriter
from media_engine.domain.models import Discarded, EngineSettings, StoredAsset
from media_engine.security.sandbox import PathSandbox
from media_engine.services.cleanup_service import CleanupScheduler, GarbageCollector
from media_engine.services.optimizer import ImageOptimizer
from media_engine.services.relocator import AssetRelocator

logger = logging.getLogger(__name__)

DEFAULT_MAX_SLUG_LENGTH = 80


def slugify(text: str) -> str:
    """Lowercase, dash-separated, ASCII alphanumerics only."""
    value = str(text).lower().strip()
    value = re.sub(r"\s+", "-", value)
    value = value.replace("&", "-and-")
    value = re.sub(r"[^a-z0-9-]", "", value)
    return re.sub(r"--+", "-", value)


def build_entity_folder_name(
    display_name: Optional[str],
    entity_id: Optional[str] = None,
    max_slug_length: int = DEFAULT_MAX_SLUG_LENGTH,
) -> str:
    """Folder name of the form ``<slug>-<id>`` used for an entity's assets."""
    slug = slugify(display_name or "")
    if max_slug_length and len(slug) > max_slug_length:
        slug = slug[:max_slug_length].rstrip("-")
    id_part = str(entity_id or "").strip() or str(uuid.uuid4())
    return f"{slug or 'item'}-{id_part}"


def generate_filename(prefix: str = "", extension: str = ".webp") -> str:
    """Collision-free file name: ``<prefix><epoch ms>-<uuid4><extension>``."""
    return f"{prefix}{int(time.time() * 1000)}-{uuid.uuid4()}{extension}"


class MediaStorageService:
    """Facade wiring every engine component from one immutable settings value."""

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        *,
        optimizer: Optional[ImageOptimizer] = None,
        writer: Optional[DurableWriter] = None,
    ):
        self.settings = settings or EngineSettings()
        self.sandbox = PathSandbox(self.settings.storage_root)
        self.optimizer = optimizer or ImageOptimizer(self.settings)
        self.writer = writer or DurableWriter()
        self.relocator = AssetRelocator(self.sandbox, self.writer)
        self.collector = GarbageCollector(self.sandbox, self.settings.staging_dirs)

    def build_scheduler(self) -> CleanupScheduler:
        return CleanupScheduler(
            self.collector,
            max_age_hours=self.settings.cleanup_max_age_hours,
            schedule_hours=self.settings.cleanup_schedule_hours,
        )

    def save_image(
        self,
        buffer: bytes,
        relative_dir: str,
        filename: str,
        max_bytes: Optional[int] = None,
    ) -> StoredAsset:
        """Optimize ``buffer`` and commit it at ``relative_dir/filename``."""
        # Paths are validated before paying for the encode.
        logical = self.sandbox.join(relative_dir, filename)
        target = self.sandbox.resolve(logical)

        optimized = self.optimizer.optimize(buffer, max_bytes)
        self.writer.write(target, optimized.data)
        logger.info(
            "Stored %s (%s bytes, %sx%s, q=%s)",
            logical,
            optimized.size,
            optimized.width,
            optimized.height,
            optimized.quality,
        )
        stored = self.sandbox.to_logical(target)
        return StoredAsset(
            logical_path=stored,
            url=self.sandbox.to_public_url(stored),
            path=target,
            size=optimized.size,
            width=optimized.width,
            height=optimized.height,
            quality=optimized.quality,
        )

    def stage_image(
        self,
        buffer: bytes,
        filename: Optional[str] = None,
        max_bytes: Optional[int] = None,
    ) -> StoredAsset:
        """Save into the first staging directory under a generated name."""
        return self.save_image(
            buffer,
            self.settings.staging_dirs[0],
            filename or generate_filename(),
            max_bytes,
        )

    def relocate(self, source: str, relative_dir: str, filename: str) -> str:
        return self.relocator.relocate(source, relative_dir, filename)

    def unlink(self, reference: str) -> Discarded:
        return self.relocator.unlink(reference)

    def remove_directory(self, relative_dir: str) -> Discarded:
        return self.relocator.remove_directory(relative_dir)

    def remove_asset_directory(self, reference: str) -> Discarded:
        return self.relocator.remove_asset_directory(reference)

    def public_url(self, logical_path: str) -> str:
        return self.sandbox.to_public_url(logical_path)
