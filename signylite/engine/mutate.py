"""
Document mutation.

Composites a rendered mark onto the target page of a SourceDocument,
optionally stamps the date and appends the audit trail, then serializes
the result to a fresh byte buffer. The SourceDocument itself is never
modified.
"""
import io
import logging
import re
from dataclasses import dataclass
from typing import Optional

import fitz  # PyMuPDF
from PIL import Image
from PIL.PngImagePlugin import PngInfo

from signylite.engine.audit import AuditPageRenderer, AuditRecord
from signylite.engine.document import DocumentKind, SourceDocument
from signylite.engine.errors import MissingInputError, SerializeError
from signylite.engine.geometry import (
    STAMP_MARGIN,
    PlacementSpec,
    ResolvedPlacement,
    map_placement,
    right_aligned_x,
)
from signylite.engine.render import (
    FontFamily,
    MarkContent,
    MarkRenderer,
    TextArtifact,
    TiledPattern,
    TypedText,
    is_empty_mark,
)
from signylite.utils.datetime_utils import format_local_date
from signylite.utils.hashing import short_fingerprint

logger = logging.getLogger(__name__)

PRODUCER = "Signylite"
PDF_MEDIA_TYPE = "application/pdf"
PNG_MEDIA_TYPE = "image/png"

_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class OutputDocument:
    """Serialized result of one signing operation. Owned by the caller."""
    data: bytes
    kind: DocumentKind
    filename: str
    media_type: str
    page_count: int
    fingerprint: str  # of the original input
    placement: ResolvedPlacement
    audit: Optional[AuditRecord] = None

    @property
    def byte_length(self) -> int:
        return len(self.data)


def suggested_filename(document: SourceDocument, mark: MarkContent) -> str:
    """
    Download name for the output.

    ``<base>_signed.pdf`` for PDFs, ``watermarked.png`` for watermarked
    images and ``<base>_signed.png`` for other images.
    """
    base = _WHITESPACE.sub("_", document.base_name.strip()) or "document"
    if document.kind == DocumentKind.PDF:
        return f"{base}_signed.pdf"
    if isinstance(mark, TiledPattern):
        return "watermarked.png"
    return f"{base}_signed.png"


def date_stamp_text(value=None) -> str:
    return f"Date: {format_local_date(value)}"


class DocumentMutator:
    """Applies one mark to one document."""

    def __init__(
        self,
        renderer: Optional[MarkRenderer] = None,
        audit_renderer: Optional[AuditPageRenderer] = None,
        strict: bool = False,
        stamp_margin: float = STAMP_MARGIN,
    ):
        self.renderer = renderer or MarkRenderer()
        self.audit_renderer = audit_renderer or AuditPageRenderer()
        self.strict = strict
        self.stamp_margin = stamp_margin

    def mutate(
        self,
        document: SourceDocument,
        spec: PlacementSpec,
        mark: MarkContent,
        audit_record: Optional[AuditRecord] = None,
        date_stamp: bool = False,
    ) -> OutputDocument:
        """
        Composite ``mark`` onto ``document`` and serialize the result.

        Args:
            document: Loaded source
            spec: Requested placement
            mark: Active mark variant
            audit_record: Append an audit trail when given
            date_stamp: Add a flush-right ``Date:`` line (text marks only)

        Returns:
            OutputDocument with fresh bytes

        Raises:
            MissingInputError: If the mark has nothing to draw
            PlacementOutOfRangeError: If strict and the page does not exist
            SerializeError: If the output cannot be encoded
        """
        if is_empty_mark(mark):
            raise MissingInputError("No mark content provided.")

        placement = map_placement(spec, document.pages, document.origin, strict=self.strict)
        page = document.page(placement.page_index)
        artifact = self.renderer.render(mark, spec, page, kind=document.kind)

        stamp = None
        if date_stamp and isinstance(mark, TypedText):
            stamp = self._date_stamp(spec, page.width, document.kind)

        if document.kind == DocumentKind.PDF:
            data, page_count = self._mutate_pdf(document, placement, artifact, stamp, audit_record)
            media_type = PDF_MEDIA_TYPE
        else:
            data = self._mutate_image(document, placement, artifact, stamp, audit_record)
            page_count = 1
            media_type = PNG_MEDIA_TYPE

        output = OutputDocument(
            data=data,
            kind=document.kind,
            filename=suggested_filename(document, mark),
            media_type=media_type,
            page_count=page_count,
            fingerprint=document.fingerprint(),
            placement=placement,
            audit=audit_record,
        )
        logger.info(
            f"Marked {document.kind.value} page {placement.page_number} at "
            f"({placement.x:.0f}, {placement.y:.0f}); {output.byte_length} bytes out, "
            f"fp={short_fingerprint(output.fingerprint)}"
        )
        return output

    def _date_stamp(self, spec: PlacementSpec, page_width: float, kind: DocumentKind):
        text = date_stamp_text()
        width = self.renderer.measure_text(text, FontFamily.SANS, spec.size, kind)
        artifact = TextArtifact(text, FontFamily.SANS, spec.size, spec.color, width)
        return artifact, right_aligned_x(page_width, width, self.stamp_margin)

    def _mutate_pdf(self, document, placement, artifact, stamp, audit_record):
        doc = fitz.open(stream=document.data, filetype="pdf")
        try:
            page = doc[placement.page_index]
            artifact.draw_pdf(page, placement.x, placement.y)
            if stamp:
                stamp_artifact, stamp_x = stamp
                stamp_artifact.draw_pdf(page, stamp_x, placement.y)

            if audit_record is not None:
                # Always last, after the content has been mutated
                self.audit_renderer.append_to(doc, audit_record)

            metadata = doc.metadata or {}
            metadata["producer"] = PRODUCER
            metadata["keywords"] = (
                f"{metadata.get('keywords') or ''} "
                f"sha256:{document.fingerprint()}"
            ).strip()
            doc.set_metadata(metadata)

            page_count = doc.page_count
            try:
                data = doc.tobytes(garbage=3, deflate=True)
            except (RuntimeError, ValueError) as e:
                raise SerializeError(f"Failed to write PDF: {e}")
        finally:
            doc.close()

        return data, page_count

    def _mutate_image(self, document, placement, artifact, stamp, audit_record):
        with Image.open(io.BytesIO(document.data)) as source:
            image = source.convert("RGBA")

        image = artifact.draw_image(image, placement.x, placement.y)
        if stamp:
            stamp_artifact, stamp_x = stamp
            image = stamp_artifact.draw_image(image, stamp_x, placement.y)

        info = PngInfo()
        if audit_record is not None:
            for key, value in audit_record.to_metadata().items():
                info.add_itxt(key, value)

        buffer = io.BytesIO()
        try:
            image.save(buffer, format="PNG", pnginfo=info)
        except (OSError, ValueError) as e:
            raise SerializeError(f"Failed to write PNG: {e}")
        return buffer.getvalue()
