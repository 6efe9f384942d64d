"""
Pytest configuration and fixtures.
"""
import base64
import io
import os
import sys
import tempfile

import fitz  # PyMuPDF
import pytest
from PIL import Image, ImageDraw

# Add package to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from signylite.config import Settings  # noqa: E402


A4_WIDTH = 595.0
A4_HEIGHT = 842.0


def make_pdf(
    page_count: int = 1,
    width: float = A4_WIDTH,
    height: float = A4_HEIGHT,
    rotation: int = 0,
    label: bool = True,
) -> bytes:
    """Build a simple PDF with a line of text on every page."""
    doc = fitz.open()
    for i in range(page_count):
        page = doc.new_page(width=width, height=height)
        if label:
            page.insert_text((50, 100), f"Test Document - page {i + 1}", fontsize=24)
        page.set_rotation(rotation)
    data = doc.tobytes()
    doc.close()
    return data


def make_png(width: int = 400, height: int = 300, color=(255, 255, 255)) -> bytes:
    image = Image.new("RGB", (width, height), color)
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def pdf_factory():
    return make_pdf


@pytest.fixture
def png_factory():
    return make_png


@pytest.fixture
def sample_pdf_bytes():
    """One A4 page."""
    return make_pdf(1)


@pytest.fixture
def three_page_pdf_bytes():
    return make_pdf(3)


@pytest.fixture
def sample_png_bytes():
    """A plain white 400x300 image, the document side of raster tests."""
    return make_png(400, 300)


@pytest.fixture
def signature_png_bytes():
    """A small transparent PNG with a dark scribble, the mark side of raster tests."""
    image = Image.new("RGBA", (120, 40), (0, 0, 0, 0))
    draw = ImageDraw.Draw(image)
    draw.line([(5, 30), (40, 8), (80, 32), (115, 10)], fill=(0, 0, 0, 255), width=3)
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def sample_png_base64(signature_png_bytes):
    return base64.b64encode(signature_png_bytes).decode()


@pytest.fixture
def test_settings():
    """Settings with defaults, independent of the caller's environment."""
    return Settings(
        environment="test",
        debug=True,
        strict_placement=False,
        audit_environment_label="Signylite test",
    )


@pytest.fixture
def strict_settings():
    return Settings(environment="test", strict_placement=True)
