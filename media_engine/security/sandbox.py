"""Storage-root sandbox: the only place logical paths become filesystem paths."""

from __future__ import annotations

import logging
import os
import posixpath
import re
from pathlib import Path
from typing import Final, Optional

from media_engine.domain.errors import InvalidPathError

logger = logging.getLogger(__name__)

PUBLIC_PREFIX: Final = "/uploads"
_DRIVE_RE: Final = re.compile(r"^[A-Za-z]:")


class PathSandbox:
    """
    Map storage-relative logical paths onto a single storage root.

    Every logical path is normalized and re-validated against the root before
    use; nothing outside the root is ever returned.
    """

    def __init__(self, root: str | os.PathLike[str]):
        self.root = Path(root).expanduser().resolve()

    def normalize(self, logical_path: str) -> str:
        """Return the canonical posix form of a logical path (may start with ``..``)."""
        if logical_path is None:
            raise InvalidPathError("", "Path is required")
        raw = str(logical_path)
        if "\x00" in raw:
            raise InvalidPathError(raw, "Path contains a NUL byte")
        value = raw.strip().replace("\\", "/")
        if _DRIVE_RE.match(value):
            raise InvalidPathError(raw, "Drive-qualified paths are not allowed")
        value = value.lstrip("/")
        if not value:
            return ""
        normalized = posixpath.normpath(value)
        return "" if normalized == "." else normalized

    def resolve(self, logical_path: str) -> Path:
        """Resolve a logical file path to an absolute path inside the root."""
        normalized = self.normalize(logical_path)
        if not normalized:
            raise InvalidPathError(str(logical_path), "Empty path")
        return self._contain(str(logical_path), normalized)

    def resolve_directory(self, logical_dir: str) -> Path:
        """Like :meth:`resolve`, but for directories; the root itself is refused."""
        candidate = self.resolve(logical_dir)
        if candidate == self.root:
            raise InvalidPathError(str(logical_dir), "Storage root is not addressable")
        return candidate

    def join(self, logical_dir: str, filename: str) -> str:
        """Append a single filename segment to a logical directory."""
        name = str(filename or "").strip()
        if not name or name in (".", "..") or "/" in name or "\\" in name or "\x00" in name:
            raise InvalidPathError(name, "Filename must be a single path segment")
        directory = self.normalize(logical_dir)
        logical = posixpath.join(directory, name) if directory else name
        # Validate the combined path before handing it out.
        self.resolve(logical)
        return logical

    def to_logical(self, absolute_path: str | os.PathLike[str]) -> str:
        """Inverse mapping: absolute path under the root -> logical path."""
        relative = os.path.relpath(os.path.normpath(os.fspath(absolute_path)), self.root)
        if self._escapes(relative) or relative == os.curdir:
            raise InvalidPathError(os.fspath(absolute_path))
        return Path(relative).as_posix()

    def to_public_url(self, logical_path: str) -> str:
        normalized = self.normalize(logical_path)
        if not normalized or self._escapes(normalized):
            raise InvalidPathError(str(logical_path))
        return posixpath.join(PUBLIC_PREFIX, normalized)

    @staticmethod
    def from_public_url(url: str) -> Optional[str]:
        """Strip the ``/uploads/`` prefix; ``None`` if the URL is not ours."""
        value = str(url or "").strip().replace("\\", "/")
        for prefix in (PUBLIC_PREFIX + "/", PUBLIC_PREFIX.lstrip("/") + "/"):
            if value.startswith(prefix):
                return value[len(prefix):] or None
        return None

    def to_logical_reference(self, reference: str) -> str:
        """Accept either a public URL (``/uploads/...`` or ``uploads/...``) or a logical path."""
        value = str(reference or "").strip()
        logical = self.from_public_url(value)
        normalized = self.normalize(value if logical is None else logical)
        if not normalized or self._escapes(normalized):
            raise InvalidPathError(str(reference))
        return normalized

    def _contain(self, raw: str, normalized: str) -> Path:
        candidate = Path(os.path.normpath(os.path.join(self.root, *normalized.split("/"))))
        relative = os.path.relpath(candidate, self.root)
        if self._escapes(relative):
            logger.warning("Rejected path outside storage root: %r", raw)
            raise InvalidPathError(raw)
        return candidate

    @staticmethod
    def _escapes(relative: str) -> bool:
        parts = relative.replace("\\", "/").split("/")
        return os.path.isabs(relative) or parts[0] == os.pardir or os.pardir in parts
