"""Move committed assets between logical locations and clean up after them."""

from __future__ import annotations

import errno
import logging
import os
import posixpath
from typing import Optional

from media_engine.adapters.filesystem import DurableWriter, discard_rmtree, discard_unlink
from media_engine.domain.errors import IOFailureError
from media_engine.domain.models import Discarded
from media_engine.security.sandbox import PathSandbox

logger = logging.getLogger(__name__)


class AssetRelocator:
    """Relocate, unlink and prune assets; every path goes through the sandbox."""

    def __init__(self, sandbox: PathSandbox, writer: Optional[DurableWriter] = None):
        self.sandbox = sandbox
        self.writer = writer or DurableWriter()

    def relocate(self, source: str, to_directory: str, new_filename: str) -> str:
        """
        Move ``source`` to ``to_directory/new_filename`` and return the new logical path.

        An existing destination file is replaced. Cross-device moves fall back
        to copy-then-delete; the source is only removed once the copy is
        fully committed.
        """
        from_logical = self.sandbox.to_logical_reference(source)
        from_abs = self.sandbox.resolve(from_logical)
        to_logical = self.sandbox.join(to_directory, new_filename)
        to_abs = self.sandbox.resolve(to_logical)

        if not from_abs.is_file():
            if to_abs.is_file():
                logger.info("Relocation of %s already done; %s is in place", from_logical, to_logical)
                return to_logical
            raise IOFailureError(
                f"Asset not found: {from_logical}", code="asset_not_found", status=404
            )
        if from_abs == to_abs:
            return to_logical

        try:
            to_abs.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise IOFailureError(f"Cannot create directory {to_directory!r}") from exc

        stale = discard_unlink(to_abs)
        if not stale.ok:
            logger.warning("Could not remove existing %s: %s", to_logical, stale.error)

        try:
            os.rename(from_abs, to_abs)
        except OSError as exc:
            if exc.errno != errno.EXDEV:
                raise IOFailureError(f"Failed to move {from_logical} to {to_logical}") from exc
            logger.info("Cross-device move for %s, copying", from_logical)
            self.writer.copy(from_abs, to_abs)
            leftover = discard_unlink(from_abs)
            if not leftover.ok:
                logger.warning("Source %s kept after copy: %s", from_logical, leftover.error)

        logger.info("Relocated %s -> %s", from_logical, to_logical)
        return to_logical

    def unlink(self, reference: str) -> Discarded:
        """Best-effort single file delete. Invalid paths are still rejected."""
        logical = self.sandbox.to_logical_reference(reference)
        result = discard_unlink(self.sandbox.resolve(logical))
        if not result.ok:
            logger.debug("Ignored unlink failure for %s: %s", logical, result.error)
        return result

    def remove_directory(self, logical_directory: str) -> Discarded:
        """Recursively remove an entity folder, best-effort."""
        absolute = self.sandbox.resolve_directory(logical_directory)
        result = discard_rmtree(absolute)
        if not result.ok:
            logger.debug("Ignored rmtree failure for %s: %s", logical_directory, result.error)
        return result

    def remove_asset_directory(self, reference: str) -> Discarded:
        """Remove the folder that holds ``reference``."""
        logical = self.sandbox.to_logical_reference(reference)
        return self.remove_directory(posixpath.dirname(logical))
