"""
Size-bounded image encoder.

Searches the width x quality grid greedily, best fidelity first, and returns
the first WebP encoding that fits the byte budget.
"""

from __future__ import annotations

import io
import logging
from typing import Iterable, List, Optional, Sequence

from PIL import Image, ImageOps, UnidentifiedImageError

from media_engine.domain.errors import OptimizationFailedError
from media_engine.domain.models import EngineSettings, OptimizedImage

logger = logging.getLogger(__name__)

TARGET_FORMAT = "WEBP"
WEBP_METHOD = 4  # compression effort (0-6)
WEBP_MAX_DIMENSION = 16383


def width_candidates(intrinsic_width: int, width_ladder: Iterable[int]) -> List[Optional[int]]:
    """``None`` (keep size) first, then every ladder width below the intrinsic one."""
    smaller = sorted({w for w in width_ladder if w < intrinsic_width}, reverse=True)
    return [None, *smaller]


class ImageOptimizer:
    """Encode raw image buffers under a byte budget. Performs no disk access."""

    def __init__(self, settings: Optional[EngineSettings] = None, *, method: int = WEBP_METHOD):
        self.settings = settings or EngineSettings()
        self.method = method

    def optimize(
        self,
        buffer: bytes,
        max_bytes: Optional[int] = None,
        quality_ladder: Optional[Sequence[int]] = None,
        width_ladder: Optional[Sequence[int]] = None,
    ) -> OptimizedImage:
        budget = max_bytes if max_bytes is not None else self.settings.max_image_bytes
        qualities = list(self.settings.quality_ladder if quality_ladder is None else quality_ladder)
        widths = list(self.settings.width_ladder if width_ladder is None else width_ladder)
        if not qualities:
            raise ValueError("Quality ladder must not be empty")
        if not widths:
            raise ValueError("Width ladder must not be empty")

        base = self._decode(buffer, budget)
        candidates = width_candidates(base.width, widths)

        for candidate in candidates:
            frame = base if candidate is None else self._shrink(base, candidate)
            if max(frame.width, frame.height) > WEBP_MAX_DIMENSION:
                logger.debug("Skipping %sx%s: beyond the WebP size limit", frame.width, frame.height)
                continue
            for quality in qualities:
                try:
                    encoded = self._encode(frame, quality)
                except (ValueError, OSError) as exc:
                    logger.debug("Encoding %sx%s failed: %s", frame.width, frame.height, exc)
                    break
                logger.debug(
                    "Attempt %sx%s q=%s -> %s bytes (budget %s)",
                    frame.width,
                    frame.height,
                    quality,
                    len(encoded),
                    budget,
                )
                if len(encoded) <= budget:
                    return OptimizedImage(
                        data=encoded,
                        width=frame.width,
                        height=frame.height,
                        quality=quality,
                        resized=frame is not base,
                    )

        logger.warning(
            "Image %sx%s does not fit %s bytes at any of %s grid points",
            base.width,
            base.height,
            budget,
            len(candidates) * len(qualities),
        )
        raise OptimizationFailedError(budget)

    def _decode(self, buffer: bytes, budget: int) -> Image.Image:
        try:
            with Image.open(io.BytesIO(buffer)) as source:
                # Orientation is applied once; every grid point reuses the result.
                image = ImageOps.exif_transpose(source)
                image.load()
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
            raise OptimizationFailedError(
                budget,
                "Unsupported or corrupt image",
                code="unsupported_image",
                status=415,
            ) from exc

        if image.mode not in ("RGB", "RGBA"):
            has_alpha = "A" in image.getbands() or "transparency" in image.info
            image = image.convert("RGBA" if has_alpha else "RGB")
        return image

    @staticmethod
    def _shrink(image: Image.Image, width: int) -> Image.Image:
        if width >= image.width:
            return image
        height = max(1, round(image.height * width / image.width))
        return image.resize((width, height), Image.Resampling.LANCZOS)

    def _encode(self, image: Image.Image, quality: int) -> bytes:
        out = io.BytesIO()
        image.save(out, format=TARGET_FORMAT, quality=quality, method=self.method)
        return out.getvalue()
