"""
Marking session.

Holds everything one editing session works on: the loaded document, the
active mark, the placement and the freehand canvas. A UI (or the local
HTTP adapter) drives it; the engine objects are built from Settings here
and receive plain values.

load_source() and sign() are coroutines that yield at their suspension
points. A busy flag rejects overlapping operations.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Dict, Optional, Union

from signylite.config import Settings, get_settings
from signylite.engine.audit import AuditPageRenderer, build_audit_record
from signylite.engine.document import SourceDocument, load_document
from signylite.engine.errors import LoadError, MarkingError, MissingInputError, SessionBusyError
from signylite.engine.freehand import StrokeCanvas
from signylite.engine.geometry import (
    Color,
    Corner,
    PlacementSpec,
    apply_corner,
    clamp_page_index,
    corner_presets,
)
from signylite.engine.mutate import DocumentMutator, OutputDocument
from signylite.engine.render import (
    FontFamily,
    MarkContent,
    MarkRenderer,
    RasterImage,
    TiledPattern,
    TypedText,
    is_empty_mark,
)
from signylite.utils.hashing import short_fingerprint
from signylite.utils.logging import fingerprint, set_context

logger = logging.getLogger(__name__)

INTERNAL_ERROR = "INTERNAL_ERROR"


class Status(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILURE = "failure"


class MarkMode(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    DRAWING = "drawing"
    WATERMARK = "watermark"


@dataclass(frozen=True)
class StatusReport:
    status: Status
    message: str = ""
    code: Optional[str] = None

    def to_dict(self) -> dict:
        return {"status": self.status.value, "message": self.message, "code": self.code}


@dataclass(frozen=True)
class OperationResult:
    """Outcome of load_source() or sign()."""
    report: StatusReport
    output: Optional[OutputDocument] = None

    @property
    def ok(self) -> bool:
        return self.report.status == Status.SUCCESS


StatusCallback = Callable[[StatusReport], Any]


class MarkingSession:
    """Single-user editing session. Nothing is persisted."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        on_status: Optional[StatusCallback] = None,
    ):
        self.settings = settings or get_settings()
        self.on_status = on_status
        self.session_id = uuid.uuid4().hex

        self.renderer = MarkRenderer(
            reference_size=self.settings.raster_reference_size,
            min_scale=self.settings.raster_min_scale,
            min_opacity=self.settings.watermark_min_opacity,
            max_opacity=self.settings.watermark_max_opacity,
            step_divisor=self.settings.watermark_step_divisor,
        )
        self.mutator = DocumentMutator(
            renderer=self.renderer,
            audit_renderer=AuditPageRenderer(
                line_height=self.settings.audit_line_height,
                include_qr=self.settings.audit_include_qr,
            ),
            strict=self.settings.strict_placement,
            stamp_margin=self.settings.stamp_margin,
        )

        self.document: Optional[SourceDocument] = None
        self._busy = False
        self._closed = False
        self.reset()

    # =========================================================================
    # State
    # =========================================================================

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def mark(self) -> Optional[MarkContent]:
        """The mark the next sign() would apply, or None if there is none."""
        if self.mode == MarkMode.DRAWING:
            if self.canvas.is_empty or self.canvas.snapshot() is None:
                return None
            return self.canvas.to_raster_image()
        return self._mark

    def reset(self) -> None:
        """Back to the initial empty state."""
        self._check_idle()
        self.document = None
        self._reset_editing()
        self.last_report = StatusReport(Status.IDLE)

    def close(self) -> None:
        """Tear down the session. Later operations fail."""
        self._check_idle()
        self.reset()
        self._closed = True
        logger.info(f"Session {self.session_id[:8]} closed")

    def _reset_editing(self) -> None:
        self.mode = MarkMode.TEXT
        self._mark: Optional[MarkContent] = None
        self.placement = PlacementSpec()
        self.canvas = StrokeCanvas(
            width=self.settings.canvas_width,
            height=self.settings.canvas_height,
            stroke_width=self.settings.stroke_width,
        )

    def _report(self, status: Status, message: str = "", code: Optional[str] = None) -> StatusReport:
        report = StatusReport(status=status, message=message, code=code)
        self.last_report = report
        if self.on_status is not None:
            try:
                self.on_status(report)
            except Exception as e:
                logger.warning(f"Status callback failed: {e}")
        return report

    def _fail(self, error: MarkingError) -> OperationResult:
        logger.warning(f"Operation failed [{error.code}]: {error.message}")
        return OperationResult(report=self._report(Status.FAILURE, error.message, error.code))

    def _check_open(self) -> None:
        if self._closed:
            raise MarkingError("Session is closed.", code="SESSION_CLOSED")

    def _check_idle(self) -> None:
        # Editing state is frozen while load_source or sign is in flight
        if self._busy:
            raise SessionBusyError("Another operation is in progress.")

    def _check_editable(self) -> None:
        self._check_open()
        self._check_idle()

    # =========================================================================
    # Mark selection
    # =========================================================================

    def set_text(self, text: str, font: Union[FontFamily, str] = FontFamily.SANS_OBLIQUE) -> TypedText:
        self._check_editable()
        self.mode = MarkMode.TEXT
        self._mark = TypedText(text=text or "", font=FontFamily(font))
        logger.debug(f"Text mark set: {fingerprint(text, 'txt_')}")
        return self._mark

    def set_image(self, data: bytes) -> RasterImage:
        """
        Use an uploaded image as the mark.

        Raises:
            MissingInputError: If no bytes were supplied
            LoadError: If the image cannot be decoded
            SessionBusyError: If load_source or sign is in flight
        """
        self._check_editable()
        image = RasterImage.from_bytes(data)
        self.mode = MarkMode.IMAGE
        self._mark = image
        logger.debug(f"Image mark set: {image.width}x{image.height}")
        return image

    def set_watermark(
        self,
        text: str,
        opacity: float = 0.12,
        size: float = 48.0,
        font: Union[FontFamily, str] = FontFamily.SANS,
    ) -> TiledPattern:
        self._check_editable()
        self.mode = MarkMode.WATERMARK
        self._mark = TiledPattern(text=text or "", opacity=float(opacity), size=float(size), font=FontFamily(font))
        return self._mark

    def use_drawing(self) -> StrokeCanvas:
        """Switch to the freehand canvas; returns it for pointer events."""
        self._check_editable()
        self.mode = MarkMode.DRAWING
        self._mark = None
        return self.canvas

    # =========================================================================
    # Placement
    # =========================================================================

    def set_placement(
        self,
        page: Optional[int] = None,
        x: Optional[float] = None,
        y: Optional[float] = None,
        size: Optional[float] = None,
        color: Union[Color, str, None] = None,
    ) -> PlacementSpec:
        """Update any subset of the placement fields."""
        self._check_editable()
        changes: Dict[str, Any] = {}
        if page is not None:
            changes["page"] = page
        if x is not None:
            changes["x"] = float(x)
        if y is not None:
            changes["y"] = float(y)
        if size is not None:
            changes["size"] = float(size)
        if color is not None:
            changes["color"] = color if isinstance(color, Color) else Color.from_hex(color)
        self.placement = replace(self.placement, **changes)
        return self.placement

    def apply_corner(self, corner: Union[Corner, str]) -> PlacementSpec:
        """
        Move the placement to a quick-corner anchor of the current page.

        Raises:
            MissingInputError: If no document is loaded
        """
        self._check_editable()
        document = self._require_document()
        page = document.page(clamp_page_index(self.placement.page, document.page_count))
        self.placement = apply_corner(
            self.placement,
            Corner(corner),
            page.width,
            page.height,
            mark_width=self._mark_width(document),
            origin=document.origin,
            **self._corner_options(),
        )
        return self.placement

    def _corner_options(self) -> dict:
        return {
            "margin": self.settings.corner_margin,
            "line_height": self.settings.corner_line_height,
            "fallback_width": self.settings.fallback_mark_width,
        }

    def _mark_width(self, document: SourceDocument) -> Optional[float]:
        """Measured width of a text mark; None means use the fallback width."""
        mark = self.mark
        if isinstance(mark, TypedText) and mark.text.strip():
            return self.renderer.measure_text(
                mark.text.strip(), mark.font, self.placement.size, document.kind
            )
        return None

    def _require_document(self) -> SourceDocument:
        if self.document is None:
            raise MissingInputError("No source document loaded.")
        return self.document

    def inspect(self) -> dict:
        """
        Describe the loaded document and the current editing state.

        Raises:
            MissingInputError: If no document is loaded
        """
        self._check_open()
        document = self._require_document()
        index = clamp_page_index(self.placement.page, document.page_count)
        page = document.page(index)
        corners = corner_presets(
            page.width,
            page.height,
            mark_width=self._mark_width(document),
            origin=document.origin,
            **self._corner_options(),
        )
        return {
            "filename": document.filename,
            "kind": document.kind.value,
            "origin": document.origin.value,
            "page_count": document.page_count,
            "byte_length": document.byte_length,
            "fingerprint": document.fingerprint(),
            "pages": [
                {"page": p.index + 1, "width": p.width, "height": p.height}
                for p in document.pages
            ],
            "target_page": index + 1,
            "corners": {corner.value: {"x": x, "y": y} for corner, (x, y) in corners.items()},
            "mode": self.mode.value,
            "placement": self.placement.to_dict(),
            "status": self.last_report.to_dict(),
        }

    # =========================================================================
    # Operations
    # =========================================================================

    async def load_source(self, data: bytes, filename: Optional[str] = None) -> OperationResult:
        """
        Load a new source document.

        On success the document is swapped in one assignment and the mark,
        placement and canvas are reset. On failure the previous state is
        left untouched.
        """
        if self._busy:
            return self._fail(SessionBusyError("Another operation is in progress."))

        self._busy = True
        try:
            self._check_open()
            self._report(Status.PROCESSING, "Loading document...")
            if data and len(data) > self.settings.max_upload_bytes:
                raise LoadError(
                    f"File is too large ({len(data)} bytes, limit {self.settings.max_upload_bytes}).",
                    code="FILE_TOO_LARGE",
                )
            await asyncio.sleep(0)  # decode
            document = load_document(data, filename)
            await asyncio.sleep(0)  # digest
            document_fp = document.fingerprint()
        except MarkingError as e:
            return self._fail(e)
        except Exception:
            logger.exception("Unexpected error while loading document")
            return OperationResult(
                report=self._report(Status.FAILURE, "Unexpected error while loading document.", INTERNAL_ERROR)
            )
        finally:
            self._busy = False

        self.document = document
        self._reset_editing()
        set_context(session_id=self.session_id, document_fp=short_fingerprint(document_fp))
        logger.info(
            f"Session {self.session_id[:8]} loaded {fingerprint(document.filename, 'file_')}: "
            f"{document.page_count} page(s)"
        )
        report = self._report(
            Status.SUCCESS,
            f"Loaded {document.kind.value} with {document.page_count} page(s).",
        )
        return OperationResult(report=report)

    async def sign(self, audit: bool = False, date_stamp: bool = False) -> OperationResult:
        """
        Apply the active mark to the loaded document.

        Args:
            audit: Append the audit trail (page for PDFs, text chunks for images)
            date_stamp: Add a flush-right date on the text mark's baseline

        Returns:
            OperationResult; ``output`` is set on success
        """
        if self._busy:
            return self._fail(SessionBusyError("Another operation is in progress."))

        self._report(Status.VALIDATING, "Checking inputs...")
        try:
            self._check_open()
            document = self._require_document()
            mark = self.mark
            placement = self.placement
            if is_empty_mark(mark):
                raise MissingInputError(self._missing_mark_message())
        except MarkingError as e:
            return self._fail(e)

        self._busy = True
        try:
            self._report(Status.PROCESSING, "Applying mark...")
            await asyncio.sleep(0)  # digest
            document_fp = document.fingerprint()

            record = None
            if audit:
                record = build_audit_record(
                    document.filename,
                    document_fp,
                    environment=self.settings.audit_environment_label or None,
                )

            await asyncio.sleep(0)  # composite and serialize
            output = self.mutator.mutate(
                document,
                placement,
                mark,
                audit_record=record,
                date_stamp=date_stamp,
            )
        except MarkingError as e:
            return self._fail(e)
        except Exception:
            logger.exception("Unexpected error while marking document")
            return OperationResult(
                report=self._report(Status.FAILURE, "Unexpected error while marking document.", INTERNAL_ERROR)
            )
        finally:
            self._busy = False

        report = self._report(Status.SUCCESS, f"Done: {output.filename}")
        return OperationResult(report=report, output=output)

    def _missing_mark_message(self) -> str:
        if self.mode == MarkMode.DRAWING:
            return "Draw a signature first."
        if self.mode == MarkMode.IMAGE:
            return "Choose a signature image first."
        if self.mode == MarkMode.WATERMARK:
            return "Enter watermark text first."
        return "Type a signature first."
