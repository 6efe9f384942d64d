"""
Freehand signature capture.

A StrokeCanvas accumulates pointer strokes into a transparent raster:

    Idle --down--> Stroking --move--> Stroking --up--> Idle

Mouse, pen and touch events drive the same transitions. Each completed
stroke refreshes the PNG snapshot that is later embedded as a RasterImage.
"""
import io
import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from PIL import Image, ImageDraw

from signylite.engine.errors import MissingInputError
from signylite.engine.geometry import Color
from signylite.engine.render import RasterImage

logger = logging.getLogger(__name__)

DEFAULT_CANVAS_SIZE = (500, 200)
DEFAULT_STROKE_WIDTH = 3
DEFAULT_INK = Color(0.0, 0.0, 0.0)


class StrokeState(str, Enum):
    IDLE = "idle"
    STROKING = "stroking"


class PointerSource(str, Enum):
    MOUSE = "mouse"
    PEN = "pen"
    TOUCH = "touch"


class PointerAction(str, Enum):
    DOWN = "down"
    MOVE = "move"
    UP = "up"


@dataclass(frozen=True)
class PointerEvent:
    action: PointerAction
    x: float = 0.0
    y: float = 0.0
    source: PointerSource = PointerSource.MOUSE


class StrokeCanvas:
    """Accumulating raster for hand-drawn marks (top-left origin, pixels)."""

    def __init__(
        self,
        width: int = DEFAULT_CANVAS_SIZE[0],
        height: int = DEFAULT_CANVAS_SIZE[1],
        stroke_width: int = DEFAULT_STROKE_WIDTH,
        ink: Color = DEFAULT_INK,
    ):
        self.width = int(width)
        self.height = int(height)
        self.stroke_width = int(stroke_width)
        self.ink = ink
        self.clear()

    @property
    def is_empty(self) -> bool:
        return self._segments == 0

    @property
    def stroke_count(self) -> int:
        return len(self._strokes)

    def clear(self) -> None:
        """Drop all strokes and the snapshot."""
        self.state = StrokeState.IDLE
        self._image = Image.new("RGBA", (self.width, self.height), (0, 0, 0, 0))
        self._draw = ImageDraw.Draw(self._image)
        self._strokes: List[List[Tuple[float, float]]] = []
        self._segments = 0
        self._snapshot: Optional[bytes] = None

    def handle(self, event: PointerEvent) -> StrokeState:
        """Apply one pointer event; returns the resulting state."""
        action = PointerAction(event.action)
        if action == PointerAction.DOWN:
            self.pointer_down(event.x, event.y)
        elif action == PointerAction.MOVE:
            self.pointer_move(event.x, event.y)
        else:
            self.pointer_up()
        return self.state

    def pointer_down(self, x: float, y: float) -> None:
        if self.state == StrokeState.STROKING:
            # Lost the previous up (e.g. pointer left the surface)
            self.pointer_up()
        self._strokes.append([(x, y)])
        self.state = StrokeState.STROKING

    def pointer_move(self, x: float, y: float) -> None:
        if self.state != StrokeState.STROKING:
            return
        stroke = self._strokes[-1]
        self._draw_segment(stroke[-1], (x, y))
        stroke.append((x, y))

    def pointer_up(self) -> None:
        if self.state != StrokeState.STROKING:
            return
        self.state = StrokeState.IDLE
        if not self.is_empty:
            self._snapshot = self._encode()

    def draw_stroke(self, points: Sequence[Tuple[float, float]]) -> None:
        """Replay one recorded stroke as down, moves, up."""
        if not points:
            return
        (x, y), rest = points[0], points[1:]
        self.pointer_down(x, y)
        for x, y in rest:
            self.pointer_move(x, y)
        self.pointer_up()

    def snapshot(self) -> Optional[bytes]:
        """PNG of everything drawn up to the last completed stroke."""
        return self._snapshot

    def to_raster_image(self) -> RasterImage:
        """
        Raster mark for the current drawing.

        Raises:
            MissingInputError: If nothing has been drawn
        """
        if self._snapshot is None:
            raise MissingInputError("No drawn signature.")
        return RasterImage(data=self._snapshot, width=self.width, height=self.height)

    def _draw_segment(self, start: Tuple[float, float], end: Tuple[float, float]) -> None:
        fill = self.ink.to_rgb255() + (255,)
        self._draw.line([start, end], fill=fill, width=self.stroke_width)
        # Round caps and joins
        radius = self.stroke_width / 2
        for px, py in (start, end):
            self._draw.ellipse((px - radius, py - radius, px + radius, py + radius), fill=fill)
        self._segments += 1

    def _encode(self) -> bytes:
        buffer = io.BytesIO()
        self._image.save(buffer, format="PNG")
        logger.debug(f"Canvas snapshot: {self.stroke_count} stroke(s), {self._segments} segment(s)")
        return buffer.getvalue()
