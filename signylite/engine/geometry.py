"""
Placement geometry.

Maps user-facing placement parameters onto a target surface's native
coordinate space.

Coordinate conventions:
- PDF pages: origin at bottom-left, Y increases upward, units are points.
- Raster images: origin at top-left, Y increases downward, units are pixels.

Values coming from the UI are already expressed in the target's own
convention; nothing here flips Y between the two. The only conversion to
PyMuPDF's top-left page space happens at draw time (see ``to_fitz_point``).
"""
import logging
import re
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, Optional, Tuple

from signylite.engine.errors import PlacementOutOfRangeError

logger = logging.getLogger(__name__)

# Quick-corner constants, in native units
CORNER_MARGIN = 36.0  # 0.5 inch
CORNER_LINE_HEIGHT = 50.0
FALLBACK_MARK_WIDTH = 200.0

# Margin used for flush-right stamps (date line)
STAMP_MARGIN = 50.0

_HEX_COLOR = re.compile(r"^#?([a-f\d]{2})([a-f\d]{2})([a-f\d]{2})$", re.IGNORECASE)


class Origin(str, Enum):
    BOTTOM_LEFT = "bottom-left"
    TOP_LEFT = "top-left"


class Corner(str, Enum):
    BOTTOM_LEFT = "bottom-left"
    BOTTOM_RIGHT = "bottom-right"
    TOP_LEFT = "top-left"
    TOP_RIGHT = "top-right"


@dataclass(frozen=True)
class Color:
    """RGB color with channels normalized to [0, 1]."""
    r: float = 0.0
    g: float = 0.0
    b: float = 0.0

    def __post_init__(self):
        for channel in (self.r, self.g, self.b):
            if not 0.0 <= channel <= 1.0:
                raise ValueError(f"Color channel out of range [0, 1]: {channel}")

    @classmethod
    def from_hex(cls, value: Optional[str]) -> "Color":
        """Parse ``#rrggbb``. Anything malformed decodes to black."""
        match = _HEX_COLOR.match((value or "").strip())
        if not match:
            return cls(0.0, 0.0, 0.0)
        r, g, b = (int(part, 16) / 255 for part in match.groups())
        return cls(r, g, b)

    def to_hex(self) -> str:
        return "#{:02x}{:02x}{:02x}".format(*self.to_rgb255())

    def as_tuple(self) -> Tuple[float, float, float]:
        return (self.r, self.g, self.b)

    def to_rgb255(self) -> Tuple[int, int, int]:
        return tuple(int(round(c * 255)) for c in (self.r, self.g, self.b))


DEFAULT_COLOR = Color.from_hex("#1f6feb")


@dataclass(frozen=True)
class PlacementSpec:
    """
    Where and how large to place a mark.

    ``page`` is 1-indexed as shown in the UI; ``x``/``y`` are native
    coordinates of the target; ``size`` is a point size for text and a
    nominal size for raster marks.
    """
    page: int = 1
    x: float = 50.0
    y: float = 50.0
    size: float = 18.0
    color: Color = field(default=DEFAULT_COLOR)

    def moved_to(self, x: float, y: float) -> "PlacementSpec":
        return replace(self, x=float(x), y=float(y))

    def to_dict(self) -> dict:
        """Export placement for audit and API responses."""
        return {
            "page": self.page,
            "x": self.x,
            "y": self.y,
            "size": self.size,
            "color": self.color.to_hex(),
        }


@dataclass(frozen=True)
class ResolvedPlacement:
    """Placement after page clamping, in the target's native space."""
    page_index: int  # 0-indexed
    x: float
    y: float
    origin: Origin
    page_width: float
    page_height: float
    clamped: bool = False

    @property
    def page_number(self) -> int:
        return self.page_index + 1

    def to_dict(self) -> dict:
        return {
            "page": self.page_number,
            "x": self.x,
            "y": self.y,
            "origin": self.origin.value,
            "clamped": self.clamped,
        }


def _coerce_page(requested_page) -> int:
    """Interpret a UI page value; unusable values mean page 1."""
    try:
        page = int(float(requested_page))
    except (TypeError, ValueError, OverflowError):
        return 1
    return page or 1


def clamp_page_index(requested_page, page_count: int) -> int:
    """
    Resolve a 1-indexed page request to a valid 0-indexed page.

    Out-of-range requests are clamped to the first or last page instead
    of failing.
    """
    if page_count < 1:
        raise ValueError(f"Document has no pages (page_count={page_count})")
    index = _coerce_page(requested_page) - 1
    return min(max(index, 0), page_count - 1)


def check_placement(spec: PlacementSpec, page_count: int, strict: bool = False) -> int:
    """
    Return the 0-indexed target page for ``spec``.

    In strict mode a page outside ``[1, page_count]`` raises
    PlacementOutOfRangeError instead of being clamped.
    """
    index = clamp_page_index(spec.page, page_count)
    if index + 1 != _coerce_page(spec.page):
        if strict:
            raise PlacementOutOfRangeError(
                f"Page {spec.page} does not exist. The document has {page_count} page(s).",
            )
        logger.info(f"Page {spec.page} clamped to {index + 1} of {page_count}")
    return index


def map_placement(
    spec: PlacementSpec,
    pages,
    origin: Origin,
    strict: bool = False,
) -> ResolvedPlacement:
    """
    Resolve ``spec`` against a document's pages.

    Args:
        spec: Requested placement
        pages: Sequence of pages with ``width``/``height``
        origin: Native origin of the target type
        strict: Raise instead of clamping out-of-range pages

    Returns:
        ResolvedPlacement on an existing page
    """
    index = check_placement(spec, len(pages), strict=strict)
    page = pages[index]
    return ResolvedPlacement(
        page_index=index,
        x=float(spec.x),
        y=float(spec.y),
        origin=origin,
        page_width=float(page.width),
        page_height=float(page.height),
        clamped=index + 1 != _coerce_page(spec.page),
    )


def corner_presets(
    page_width: float,
    page_height: float,
    mark_width: Optional[float] = None,
    origin: Origin = Origin.BOTTOM_LEFT,
    margin: float = CORNER_MARGIN,
    line_height: float = CORNER_LINE_HEIGHT,
    fallback_width: float = FALLBACK_MARK_WIDTH,
) -> Dict[Corner, Tuple[float, float]]:
    """
    Compute the four quick-corner anchors for a page.

    ``mark_width`` is the measured advance width of a text mark; when it is
    unknown the fixed fallback width is used. For top-left-origin targets
    the vertical component is mirrored so each anchor stays in its corner.
    """
    estimated = fallback_width if mark_width is None else float(mark_width)
    bottom = margin
    top = page_height - line_height
    if origin == Origin.TOP_LEFT:
        bottom, top = page_height - bottom, page_height - top

    return {
        Corner.BOTTOM_LEFT: (margin, bottom),
        Corner.BOTTOM_RIGHT: (page_width - estimated, bottom),
        Corner.TOP_LEFT: (margin, top),
        Corner.TOP_RIGHT: (page_width - estimated, top),
    }


def apply_corner(
    spec: PlacementSpec,
    corner: Corner,
    page_width: float,
    page_height: float,
    mark_width: Optional[float] = None,
    origin: Origin = Origin.BOTTOM_LEFT,
    **preset_options,
) -> PlacementSpec:
    """Move ``spec`` to a quick-corner anchor. Idempotent."""
    x, y = corner_presets(
        page_width,
        page_height,
        mark_width=mark_width,
        origin=origin,
        **preset_options,
    )[Corner(corner)]
    return spec.moved_to(x, y)


def right_aligned_x(page_width: float, measured_width: float, margin: float = STAMP_MARGIN) -> float:
    """X that puts a mark of ``measured_width`` flush against the right margin."""
    return page_width - margin - measured_width


def to_fitz_point(x: float, y: float, page_height: float) -> Tuple[float, float]:
    """Convert a bottom-left PDF point to PyMuPDF's top-left page space."""
    return x, page_height - y


def to_fitz_box(
    x: float,
    y: float,
    w: float,
    h: float,
    page_height: float,
) -> Tuple[float, float, float, float]:
    """
    Convert a bottom-left box (x, y is the lower-left corner) to
    PyMuPDF's (x0, y0, x1, y1) top-left rectangle.
    """
    y_top = page_height - y - h
    return x, y_top, x + w, y_top + h
