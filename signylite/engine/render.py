"""
Mark rendering.

Turns a MarkContent (typed text, raster image or tiled watermark) into an
Artifact that knows its size and can draw itself onto either target type:
a PyMuPDF page (bottom-left coordinates) or a Pillow image (top-left
coordinates).
"""
import io
import logging
import math
import os
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import List, Optional, Tuple, Union

import fitz  # PyMuPDF
from PIL import Image, ImageDraw, ImageFont, UnidentifiedImageError

from signylite.engine.document import DocumentKind, Page
from signylite.engine.errors import LoadError, MissingInputError
from signylite.engine.geometry import Color, PlacementSpec, to_fitz_box, to_fitz_point

logger = logging.getLogger(__name__)

# Raster marks: nominal size / reference = scale, never below the floor
RASTER_REFERENCE_SIZE = 36.0
RASTER_MIN_SCALE = 0.5

# Tiled watermark
WATERMARK_STEP_DIVISOR = 6.0
WATERMARK_MIN_OPACITY = 0.05
WATERMARK_MAX_OPACITY = 0.4


class FontFamily(str, Enum):
    SANS = "sans"
    SANS_OBLIQUE = "sans-oblique"
    SERIF = "serif"
    MONO = "mono"


# PDF standard (Base-14) fonts, by PyMuPDF short name
PDF_FONTS = {
    FontFamily.SANS: "helv",
    FontFamily.SANS_OBLIQUE: "heit",
    FontFamily.SERIF: "tiro",
    FontFamily.MONO: "cour",
}

# TrueType equivalents for raster targets and non-Latin text in PDFs
FONT_PATHS = {
    FontFamily.SANS: [
        "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
        "/usr/share/fonts/truetype/freefont/FreeSans.ttf",
        "/usr/share/fonts/truetype/liberation/LiberationSans-Regular.ttf",
    ],
    FontFamily.SANS_OBLIQUE: [
        "/usr/share/fonts/truetype/dejavu/DejaVuSans-Oblique.ttf",
        "/usr/share/fonts/truetype/freefont/FreeSansOblique.ttf",
        "/usr/share/fonts/truetype/liberation/LiberationSans-Italic.ttf",
    ],
    FontFamily.SERIF: [
        "/usr/share/fonts/truetype/dejavu/DejaVuSerif.ttf",
        "/usr/share/fonts/truetype/freefont/FreeSerif.ttf",
        "/usr/share/fonts/truetype/liberation/LiberationSerif-Regular.ttf",
    ],
    FontFamily.MONO: [
        "/usr/share/fonts/truetype/dejavu/DejaVuSansMono.ttf",
        "/usr/share/fonts/truetype/freefont/FreeMono.ttf",
        "/usr/share/fonts/truetype/liberation/LiberationMono-Regular.ttf",
    ],
}


def find_font(family: FontFamily) -> Optional[str]:
    """Find an installed TrueType file for a family."""
    for path in FONT_PATHS.get(family, FONT_PATHS[FontFamily.SANS]):
        if os.path.exists(path):
            return path
    return None


def _is_latin1(text: str) -> bool:
    try:
        text.encode("latin-1")
        return True
    except UnicodeEncodeError:
        return False


def _pdf_font(text: str, family: FontFamily) -> Tuple[dict, fitz.Font]:
    """insert_text font arguments and the matching metrics font for ``text``."""
    font_path = None if _is_latin1(text) else find_font(family)
    if font_path:
        return {"fontname": f"signylite-{family.value}", "fontfile": font_path}, fitz.Font(fontfile=font_path)
    return {"fontname": PDF_FONTS[family]}, fitz.Font(PDF_FONTS[family])


def _page_point(page: fitz.Page, x: float, y: float) -> fitz.Point:
    """
    Visible top-left point as a PyMuPDF insertion point.

    Page.rect is the rotated (visible) page, while insert_* take unrotated
    coordinates.
    """
    return fitz.Point(x, y) * page.derotation_matrix


@lru_cache(maxsize=32)
def _pil_font(family: FontFamily, size: int) -> ImageFont.ImageFont:
    """Scalable Pillow font for a family, falling back to Pillow's bundled font."""
    path = find_font(family)
    if path:
        try:
            return ImageFont.truetype(path, size)
        except OSError as e:
            logger.warning(f"Font {path} failed: {e}")
    return ImageFont.load_default(size=size)


# =============================================================================
# Mark content
# =============================================================================

@dataclass(frozen=True)
class TypedText:
    text: str
    font: FontFamily = FontFamily.SANS_OBLIQUE


@dataclass(frozen=True)
class RasterImage:
    """Decoded raster mark, normalized to RGBA PNG bytes."""
    data: bytes
    width: int
    height: int

    @classmethod
    def from_bytes(cls, data: bytes) -> "RasterImage":
        """
        Decode an uploaded or captured image once.

        Raises:
            MissingInputError: If no bytes were supplied
            LoadError: If the bytes are not a decodable image
        """
        if not data:
            raise MissingInputError("No mark image provided.")
        try:
            with Image.open(io.BytesIO(data)) as image:
                rgba = image.convert("RGBA")
        except (UnidentifiedImageError, OSError, ValueError) as e:
            raise LoadError(f"Invalid mark image: {e}")

        buffer = io.BytesIO()
        rgba.save(buffer, format="PNG")
        return cls(data=buffer.getvalue(), width=rgba.width, height=rgba.height)


@dataclass(frozen=True)
class TiledPattern:
    text: str
    opacity: float = 0.12
    size: float = 48.0
    font: FontFamily = FontFamily.SANS


MarkContent = Union[TypedText, RasterImage, TiledPattern]


def is_empty_mark(mark: Optional[MarkContent]) -> bool:
    """True when there is nothing to draw."""
    if mark is None:
        return True
    if isinstance(mark, (TypedText, TiledPattern)):
        return not mark.text.strip()
    if isinstance(mark, RasterImage):
        return not mark.data or mark.width < 1 or mark.height < 1
    return True


# =============================================================================
# Geometry helpers
# =============================================================================

def clamp_opacity(
    opacity: float,
    minimum: float = WATERMARK_MIN_OPACITY,
    maximum: float = WATERMARK_MAX_OPACITY,
) -> float:
    return min(max(float(opacity), minimum), maximum)


def raster_scale(
    size: float,
    reference: float = RASTER_REFERENCE_SIZE,
    minimum: float = RASTER_MIN_SCALE,
) -> float:
    """Scale factor for a raster mark at a nominal size."""
    return max(float(size) / reference, minimum)


def watermark_step(width: float, height: float, divisor: float = WATERMARK_STEP_DIVISOR) -> float:
    return max(width, height) / divisor


def watermark_angle(width: float, height: float) -> float:
    """Rotation in radians: a shallow diagonal, -atan(H/W)."""
    return -math.atan(height / width)


def _axis(extent: float, step: float) -> List[float]:
    # Same points as `for (v = -extent; v < extent; v += step)`, without float drift
    count = max(0, math.ceil(2 * extent / step - 1e-9))
    return [-extent + i * step for i in range(count)]


def tile_anchors(width: float, height: float, step: float) -> List[Tuple[float, float]]:
    """Anchor points relative to the surface center, row by row."""
    xs = _axis(width, step)
    return [(x, y) for y in _axis(height, step) for x in xs]


def tile_grid_shape(width: float, height: float, step: float) -> Tuple[int, int]:
    """(rows, columns) of the watermark grid."""
    return len(_axis(height, step)), len(_axis(width, step))


# =============================================================================
# Artifacts
# =============================================================================

class Artifact:
    """A drawable mark and its bounding size in native units."""

    width: float = 0.0
    height: float = 0.0

    def draw_pdf(self, page: fitz.Page, x: float, y: float) -> None:
        """Draw at bottom-left-origin point (x, y) of a PDF page as displayed."""
        raise NotImplementedError

    def draw_image(self, image: Image.Image, x: float, y: float) -> Image.Image:
        """Return ``image`` (RGBA) with the mark drawn at top-left-origin (x, y)."""
        raise NotImplementedError


class TextArtifact(Artifact):
    """A single run of text; (x, y) is the start of the baseline."""

    def __init__(self, text: str, family: FontFamily, size: float, color: Color, width: float):
        self.text = text
        self.family = family
        self.size = float(size)
        self.color = color
        self.width = width
        self.height = self.size

    def draw_pdf(self, page: fitz.Page, x: float, y: float) -> None:
        font_kwargs, _ = _pdf_font(self.text, self.family)
        page.insert_text(
            _page_point(page, *to_fitz_point(x, y, page.rect.height)),
            self.text,
            fontsize=self.size,
            color=self.color.as_tuple(),
            rotate=page.rotation,
            **font_kwargs,
        )

    def draw_image(self, image: Image.Image, x: float, y: float) -> Image.Image:
        font = _pil_font(self.family, max(1, round(self.size)))
        draw = ImageDraw.Draw(image)
        draw.text((x, y), self.text, font=font, fill=self.color.to_rgb255() + (255,), anchor="ls")
        return image


class RasterArtifact(Artifact):
    """A scaled image; (x, y) is the corner nearest the origin."""

    def __init__(self, png: bytes, width: float, height: float):
        self.png = png
        self.width = width
        self.height = height

    def draw_pdf(self, page: fitz.Page, x: float, y: float) -> None:
        # Rect * Matrix is the bounding box of the derotated corners
        rect = fitz.Rect(*to_fitz_box(x, y, self.width, self.height, page.rect.height)) * page.derotation_matrix
        page.insert_image(rect, stream=self.png, keep_proportion=True, rotate=page.rotation)

    def draw_image(self, image: Image.Image, x: float, y: float) -> Image.Image:
        size = (max(1, round(self.width)), max(1, round(self.height)))
        with Image.open(io.BytesIO(self.png)) as source:
            overlay = source.convert("RGBA").resize(size, Image.Resampling.LANCZOS)

        # Pasting into an empty layer clips anything off-surface
        layer = Image.new("RGBA", image.size, (0, 0, 0, 0))
        layer.paste(overlay, (round(x), round(y)))
        return Image.alpha_composite(image, layer)


class TiledArtifact(Artifact):
    """Repeating diagonal text covering the whole surface; (x, y) is ignored."""

    def __init__(
        self,
        text: str,
        family: FontFamily,
        size: float,
        opacity: float,
        color: Color,
        width: float,
        height: float,
        step_divisor: float = WATERMARK_STEP_DIVISOR,
    ):
        self.text = text
        self.family = family
        self.size = float(size)
        self.opacity = opacity
        self.color = color
        self.width = width
        self.height = height
        self.step_divisor = step_divisor

    def draw_pdf(self, page: fitz.Page, x: float, y: float) -> None:
        # Grid laid out in the visible orientation, like the raster path
        width, height = page.rect.width, page.rect.height
        cx, cy = width / 2, height / 2
        step = watermark_step(width, height, self.step_divisor)
        angle = watermark_angle(width, height)

        font_kwargs, font = _pdf_font(self.text, self.family)
        text_width = font.text_length(self.text, fontsize=self.size)

        # Morph matrices act in y-up PDF space, so the canvas angle flips sign
        morph = (_page_point(page, cx, cy), fitz.Matrix(math.degrees(-angle)))
        for ax, ay in tile_anchors(width, height, step):
            page.insert_text(
                _page_point(page, cx + ax - text_width / 2, cy + ay + self.size / 3),
                self.text,
                fontsize=self.size,
                color=self.color.as_tuple(),
                fill_opacity=self.opacity,
                rotate=page.rotation,
                morph=morph,
                **font_kwargs,
            )

    def draw_image(self, image: Image.Image, x: float, y: float) -> Image.Image:
        width, height = image.size
        step = watermark_step(width, height, self.step_divisor)
        angle = watermark_angle(width, height)

        # Oversized layer centered on the image so the rotated grid still
        # covers every corner after cropping
        layer = Image.new("RGBA", (2 * width, 2 * height), (0, 0, 0, 0))
        draw = ImageDraw.Draw(layer)
        font = _pil_font(self.family, max(1, round(self.size)))
        fill = self.color.to_rgb255() + (round(self.opacity * 255),)
        for ax, ay in tile_anchors(width, height, step):
            draw.text((width + ax, height + ay), self.text, font=font, fill=fill, anchor="mm")

        # Pillow rotates counter-clockwise for positive angles
        rotated = layer.rotate(math.degrees(-angle), resample=Image.Resampling.BICUBIC)
        left, top = width // 2, height // 2
        tiles = rotated.crop((left, top, left + width, top + height))
        return Image.alpha_composite(image, tiles)


# =============================================================================
# Renderer
# =============================================================================

class MarkRenderer:
    """Builds artifacts for every mark variant."""

    def __init__(
        self,
        reference_size: float = RASTER_REFERENCE_SIZE,
        min_scale: float = RASTER_MIN_SCALE,
        min_opacity: float = WATERMARK_MIN_OPACITY,
        max_opacity: float = WATERMARK_MAX_OPACITY,
        step_divisor: float = WATERMARK_STEP_DIVISOR,
    ):
        self.reference_size = reference_size
        self.min_scale = min_scale
        self.min_opacity = min_opacity
        self.max_opacity = max_opacity
        self.step_divisor = step_divisor

    def render(
        self,
        mark: MarkContent,
        spec: PlacementSpec,
        page: Page,
        kind: DocumentKind = DocumentKind.PDF,
    ) -> Artifact:
        """
        Build the artifact for ``mark``.

        Args:
            mark: Active mark variant
            spec: Placement (size and color are used here)
            page: Target surface geometry
            kind: Target type, which decides the text metrics used

        Raises:
            MissingInputError: If the mark has nothing to draw
        """
        if is_empty_mark(mark):
            raise MissingInputError("No mark content provided.")

        if isinstance(mark, TypedText):
            text = mark.text.strip()
            return TextArtifact(
                text=text,
                family=FontFamily(mark.font),
                size=spec.size,
                color=spec.color,
                width=self.measure_text(text, mark.font, spec.size, kind),
            )

        if isinstance(mark, RasterImage):
            scale = raster_scale(spec.size, self.reference_size, self.min_scale)
            return RasterArtifact(
                png=mark.data,
                width=mark.width * scale,
                height=mark.height * scale,
            )

        if isinstance(mark, TiledPattern):
            opacity = clamp_opacity(mark.opacity, self.min_opacity, self.max_opacity)
            if opacity != mark.opacity:
                logger.info(f"Watermark opacity {mark.opacity} clamped to {opacity}")
            return TiledArtifact(
                text=mark.text.strip(),
                family=FontFamily(mark.font),
                size=mark.size,
                opacity=opacity,
                color=spec.color,
                width=page.width,
                height=page.height,
                step_divisor=self.step_divisor,
            )

        raise TypeError(f"Unsupported mark type: {type(mark).__name__}")

    def measure_text(
        self,
        text: str,
        family: FontFamily,
        size: float,
        kind: DocumentKind = DocumentKind.PDF,
    ) -> float:
        """Advance width of ``text`` at ``size``, in the target's native units."""
        family = FontFamily(family)
        if kind == DocumentKind.IMAGE:
            return float(_pil_font(family, max(1, round(size))).getlength(text))

        font_path = None if _is_latin1(text) else find_font(family)
        if font_path:
            return fitz.Font(fontfile=font_path).text_length(text, fontsize=size)
        return fitz.get_text_length(text, fontname=PDF_FONTS[family], fontsize=size)
