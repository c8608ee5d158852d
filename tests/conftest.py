# tests/conftest.py
import io
import os
import sys
from pathlib import Path

import pytest
from PIL import Image

ROOT = Path(__file__).resolve().parents[1]  # repository root
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from media_engine.domain.models import EngineSettings  # noqa: E402
from media_engine.security.sandbox import PathSandbox  # noqa: E402


def encode_image(image: Image.Image, fmt: str = "PNG", **params) -> bytes:
    out = io.BytesIO()
    image.save(out, format=fmt, **params)
    return out.getvalue()


def noise_image(width: int, height: int) -> Image.Image:
    """Incompressible RGB noise: forces the optimizer down the ladders."""
    return Image.frombytes("RGB", (width, height), os.urandom(width * height * 3))


def gradient_image(width: int, height: int) -> Image.Image:
    """Smooth image that encodes to a few KB at any quality."""
    image = Image.new("RGB", (width, height))
    image.putdata(
        [((x * 255) // max(1, width - 1), (y * 255) // max(1, height - 1), 128)
         for y in range(height) for x in range(width)]
    )
    return image


@pytest.fixture()
def storage_root(tmp_path):
    root = tmp_path / "uploads"
    root.mkdir()
    return root


@pytest.fixture()
def sandbox(storage_root):
    return PathSandbox(storage_root)


@pytest.fixture()
def settings(storage_root):
    return EngineSettings(storage_root=storage_root, cleanup_enabled=False)


@pytest.fixture()
def small_png():
    return encode_image(gradient_image(64, 48))
