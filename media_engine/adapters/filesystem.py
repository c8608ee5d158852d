"""
Filesystem adapters: crash-safe writes and best-effort removals.
"""

from __future__ import annotations

import logging
import os
import shutil
import uuid
from pathlib import Path
from typing import BinaryIO, Callable

from media_engine.domain.errors import IOFailureError
from media_engine.domain.models import Discarded

logger = logging.getLogger(__name__)

TEMP_MARKER = ".tmp-"


def temp_sibling(target: Path) -> Path:
    """Unique temporary name in the target's own directory."""
    return target.with_name(f"{target.name}{TEMP_MARKER}{uuid.uuid4().hex}")


def discard_unlink(path: str | os.PathLike[str]) -> Discarded:
    """Delete one file; a file that is already gone counts as success."""
    try:
        Path(path).unlink()
    except FileNotFoundError:
        return Discarded.success()
    except OSError as exc:
        return Discarded.failure(exc)
    return Discarded.success()


def discard_rmtree(path: str | os.PathLike[str]) -> Discarded:
    """Recursively delete a directory; a missing directory counts as success."""
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        return Discarded.success()
    except OSError as exc:
        return Discarded.failure(exc)
    return Discarded.success()


class DurableWriter:
    """
    Write files with all-or-nothing visibility.

    Content goes to a temporary sibling first and is moved into place with a
    single ``os.replace``; readers see either the previous file or the new
    one, never a partial write.
    """

    def __init__(self, fsync: bool = True):
        self.fsync = fsync

    def write(self, target: str | os.PathLike[str], buffer: bytes) -> Path:
        return self._commit(Path(target), lambda handle: handle.write(buffer))

    def copy(self, source: str | os.PathLike[str], target: str | os.PathLike[str]) -> Path:
        """Copy ``source`` onto ``target`` through the same temp-then-rename commit."""

        def fill(handle: BinaryIO) -> None:
            with open(source, "rb") as src:
                shutil.copyfileobj(src, handle)

        return self._commit(Path(target), fill)

    def _commit(self, target: Path, fill: Callable[[BinaryIO], object]) -> Path:
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise IOFailureError(f"Cannot create directory for {target.name}") from exc

        temp_path = temp_sibling(target)
        try:
            with open(temp_path, "xb") as handle:
                fill(handle)
                handle.flush()
                if self.fsync:
                    os.fsync(handle.fileno())
            os.replace(temp_path, target)
        except OSError as exc:
            leftover = discard_unlink(temp_path)
            if not leftover.ok:
                logger.warning("Temporary file %s left behind: %s", temp_path, leftover.error)
            raise IOFailureError(f"Failed to write {target.name}") from exc

        logger.info("Committed %s", target)
        return target
