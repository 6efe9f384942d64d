"""
Audit trail page.

Renders a fixed-format provenance page (filename, fingerprint, local
timestamp, environment) with ReportLab and appends it as the last page of
a PDF. Raster outputs carry the same lines as PNG text chunks instead.
"""
import io
import logging
import os
import platform
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Tuple

import fitz  # PyMuPDF
import qrcode
from qrcode.exceptions import DataOverflowError
from PIL import Image
from reportlab.lib.utils import ImageReader
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont
from reportlab.pdfgen import canvas

from signylite import __version__
from signylite.utils.datetime_utils import format_local_timestamp, local_now
from signylite.utils.hashing import FINGERPRINT_ALGORITHM

logger = logging.getLogger(__name__)

AUDIT_PAGE_SIZE: Tuple[float, float] = (595.0, 842.0)  # A4 portrait, points
AUDIT_LINE_HEIGHT = 20.0
AUDIT_MARGIN = 50.0
AUDIT_QR_SIZE = 96

AUDIT_TITLE = "Signylite - Audit trail"
AUDIT_SEPARATOR = "-" * 64
AUDIT_DISCLAIMER = "Processed locally on this device. The document was not uploaded or transmitted."
AUDIT_NOTICE = "This page is not a qualified electronic signature."

_FONTS_REGISTERED = False

FONT_PATHS = {
    "DejaVuSans": "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    "DejaVuSans-Bold": "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
    "DejaVuSansMono": "/usr/share/fonts/truetype/dejavu/DejaVuSansMono.ttf",
}

# Font names to use (will be set after registration)
FONT_NORMAL = "Helvetica"  # Fallback
FONT_BOLD = "Helvetica-Bold"  # Fallback
FONT_MONO = "Courier"  # Fallback


def _register_fonts():
    """Register TTF fonts so filenames outside Latin-1 still render."""
    global _FONTS_REGISTERED, FONT_NORMAL, FONT_BOLD, FONT_MONO

    if _FONTS_REGISTERED:
        return

    try:
        if os.path.exists(FONT_PATHS["DejaVuSans"]):
            pdfmetrics.registerFont(TTFont("DejaVuSans", FONT_PATHS["DejaVuSans"]))
            FONT_NORMAL = "DejaVuSans"
            logger.info("Registered DejaVuSans font")

        if os.path.exists(FONT_PATHS["DejaVuSans-Bold"]):
            pdfmetrics.registerFont(TTFont("DejaVuSans-Bold", FONT_PATHS["DejaVuSans-Bold"]))
            FONT_BOLD = "DejaVuSans-Bold"

        if os.path.exists(FONT_PATHS["DejaVuSansMono"]):
            pdfmetrics.registerFont(TTFont("DejaVuSansMono", FONT_PATHS["DejaVuSansMono"]))
            FONT_MONO = "DejaVuSansMono"

    except Exception as e:
        # Keep the Base-14 fallbacks
        logger.warning(f"Failed to register DejaVu fonts: {e}")

    _FONTS_REGISTERED = True


_register_fonts()


def default_environment() -> str:
    """Identify the software and platform that produced the output."""
    return (
        f"Signylite {__version__} / Python {platform.python_version()} / "
        f"{platform.system()} {platform.release()}".strip()
    )


@dataclass(frozen=True)
class AuditRecord:
    """Provenance of one signing operation. Never modified once built."""
    filename: str
    fingerprint: str
    timestamp: datetime
    environment: str

    def lines(self) -> List[str]:
        """The text block, top to bottom."""
        return [
            AUDIT_TITLE,
            AUDIT_SEPARATOR,
            f"Original file: {self.filename}",
            f"{FINGERPRINT_ALGORITHM}: {self.fingerprint}",
            f"Timestamp: {format_local_timestamp(self.timestamp)}",
            f"Environment: {self.environment}",
            AUDIT_DISCLAIMER,
            AUDIT_NOTICE,
        ]

    def to_metadata(self) -> Dict[str, str]:
        """Key/value form, for formats without pages (PNG text chunks)."""
        return {
            "Signylite-Filename": self.filename,
            "Signylite-Fingerprint": f"{FINGERPRINT_ALGORITHM}:{self.fingerprint}",
            "Signylite-Timestamp": format_local_timestamp(self.timestamp),
            "Signylite-Environment": self.environment,
            "Signylite-Notice": AUDIT_DISCLAIMER,
        }


def build_audit_record(
    filename: str,
    fingerprint: str,
    environment: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> AuditRecord:
    """
    Build the audit record for one operation.

    ``fingerprint`` is the digest of the original input bytes, so it must
    be computed before this is called.
    """
    return AuditRecord(
        filename=filename,
        fingerprint=fingerprint,
        timestamp=timestamp or local_now(),
        environment=environment or default_environment(),
    )


class AuditPageRenderer:
    """Renders and appends the audit trail page."""

    def __init__(
        self,
        page_size: Tuple[float, float] = AUDIT_PAGE_SIZE,
        line_height: float = AUDIT_LINE_HEIGHT,
        margin: float = AUDIT_MARGIN,
        include_qr: bool = True,
    ):
        self.page_size = page_size
        self.line_height = line_height
        self.margin = margin
        self.include_qr = include_qr

    def render(self, record: AuditRecord) -> bytes:
        """
        Render the audit page as a standalone one-page PDF.

        Returns:
            PDF bytes
        """
        buffer = io.BytesIO()
        height = self.page_size[1]
        c = canvas.Canvas(buffer, pagesize=self.page_size)
        c.setTitle(AUDIT_TITLE)
        c.setProducer(f"Signylite {__version__}")

        y = height - self.margin
        for i, line in enumerate(record.lines()):
            if i == 0:
                c.setFont(FONT_BOLD, 14)
            elif line.startswith(f"{FINGERPRINT_ALGORITHM}:"):
                c.setFont(FONT_MONO, 8)
            else:
                c.setFont(FONT_NORMAL, 10)
            c.drawString(self.margin, y, line)
            y -= self.line_height

        if self.include_qr:
            try:
                qr_png = self._generate_qr_code(
                    f"{FINGERPRINT_ALGORITHM}:{record.fingerprint}", AUDIT_QR_SIZE
                )
                c.drawImage(
                    ImageReader(io.BytesIO(qr_png)),
                    self.margin,
                    y - AUDIT_QR_SIZE,
                    width=AUDIT_QR_SIZE,
                    height=AUDIT_QR_SIZE,
                )
            except (DataOverflowError, OSError, ValueError) as e:
                logger.warning(f"Failed to generate QR code: {e}")

        c.showPage()
        c.save()
        return buffer.getvalue()

    def append_to(self, doc: fitz.Document, record: AuditRecord) -> None:
        """Append the audit page after the last page of ``doc``."""
        page_pdf = self.render(record)
        with fitz.open(stream=page_pdf, filetype="pdf") as audit_doc:
            doc.insert_pdf(audit_doc, start_at=-1)
        logger.info(f"Appended audit page ({doc.page_count} pages total)")

    def _generate_qr_code(self, data: str, size: int) -> bytes:
        """
        Generate QR code as PNG bytes.

        Args:
            data: Payload to encode
            size: Size in points (approximate)

        Returns:
            PNG image bytes
        """
        qr = qrcode.QRCode(
            version=None,
            error_correction=qrcode.constants.ERROR_CORRECT_M,
            box_size=4,
            border=1,
        )
        qr.add_data(data)
        qr.make(fit=True)

        img = qr.make_image(fill_color="black", back_color="white")

        # Resize to target size
        img = img.resize((size * 2, size * 2), Image.Resampling.NEAREST)

        buffer = io.BytesIO()
        img.save(buffer, format="PNG")
        return buffer.getvalue()
