"""
Source document loading.

Parses raw bytes into a SourceDocument: kind, page geometry and a lazily
computed content fingerprint. PDFs are read with PyMuPDF (fitz), raster
images with Pillow.
"""
import io
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

import fitz  # PyMuPDF
from PIL import Image, UnidentifiedImageError

from signylite.engine.errors import LoadError, MissingInputError
from signylite.engine.geometry import Origin
from signylite.utils.hashing import compute_bytes_hash, short_fingerprint

logger = logging.getLogger(__name__)

PDF_MAGIC = b"%PDF-"


class DocumentKind(str, Enum):
    PDF = "pdf"
    IMAGE = "image"


@dataclass(frozen=True)
class Page:
    """One page (or the single surface of an image), in native units as displayed."""
    index: int  # 0-indexed
    width: float
    height: float


@dataclass(eq=False)
class SourceDocument:
    """
    Parsed input document.

    Treated as immutable: loading another file produces a new instance
    rather than editing this one, so the cached fingerprint can never go
    stale.
    """
    data: bytes
    kind: DocumentKind
    pages: Tuple[Page, ...]
    filename: str = "document"
    image_format: Optional[str] = None
    _fingerprint: Optional[str] = field(default=None, init=False, repr=False)

    @property
    def page_count(self) -> int:
        return len(self.pages)

    @property
    def byte_length(self) -> int:
        return len(self.data)

    @property
    def origin(self) -> Origin:
        return Origin.BOTTOM_LEFT if self.kind == DocumentKind.PDF else Origin.TOP_LEFT

    @property
    def base_name(self) -> str:
        return os.path.splitext(os.path.basename(self.filename))[0] or "document"

    def fingerprint(self) -> str:
        """SHA-256 of the original bytes, computed on first use."""
        if self._fingerprint is None:
            self._fingerprint = compute_bytes_hash(self.data)
            logger.debug(f"Fingerprinted {self.byte_length} bytes: {short_fingerprint(self._fingerprint)}")
        return self._fingerprint

    def page(self, index: int) -> Page:
        return self.pages[index]


def load_document(data: bytes, filename: Optional[str] = None) -> SourceDocument:
    """
    Parse document bytes.

    Args:
        data: Raw file content (PDF or raster image)
        filename: Original filename, used for audit and output naming

    Returns:
        SourceDocument

    Raises:
        MissingInputError: If no bytes were supplied
        LoadError: If the bytes are not a readable PDF or image
    """
    if not data:
        raise MissingInputError("No source document provided.")

    data = bytes(data)
    if data[:1024].lstrip().startswith(PDF_MAGIC):
        document = _load_pdf(data, filename or "document.pdf")
    else:
        document = _load_image(data, filename or "image.png")

    logger.info(
        f"Loaded {document.kind.value} document: {document.page_count} page(s), "
        f"{document.byte_length} bytes"
    )
    return document


def _load_pdf(data: bytes, filename: str) -> SourceDocument:
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except (fitz.FileDataError, RuntimeError, ValueError) as e:
        raise LoadError(f"Invalid PDF file: {e}")

    try:
        if doc.needs_pass:
            raise LoadError("PDF is password-protected.", code="ENCRYPTED_PDF")
        if doc.page_count < 1:
            raise LoadError("PDF has no pages.")
        pages = tuple(
            Page(index=i, width=page.rect.width, height=page.rect.height)
            for i, page in enumerate(doc)
        )
    finally:
        doc.close()

    return SourceDocument(data=data, kind=DocumentKind.PDF, pages=pages, filename=filename)


def _load_image(data: bytes, filename: str) -> SourceDocument:
    try:
        with Image.open(io.BytesIO(data)) as image:
            image.load()
            width, height = image.size
            image_format = image.format
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as e:
        raise LoadError(f"Unsupported or corrupt file (expected PDF or image): {e}")

    return SourceDocument(
        data=data,
        kind=DocumentKind.IMAGE,
        pages=(Page(index=0, width=float(width), height=float(height)),),
        filename=filename,
        image_format=image_format,
    )
