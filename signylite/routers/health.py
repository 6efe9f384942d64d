"""
Health check endpoints for diagnosing the local engine.
"""
import fitz  # PyMuPDF
import PIL
import reportlab
from fastapi import APIRouter

from signylite import __version__
from signylite.engine.render import FontFamily, find_font
from signylite.models import FontCheckResponse, HealthResponse, HealthStatus

router = APIRouter(
    prefix="/health",
    tags=["health"],
)


@router.get("", response_model=HealthResponse)
async def health_check():
    """Liveness plus the versions of the rendering libraries in use."""
    return HealthResponse(
        status=HealthStatus.HEALTHY,
        version=__version__,
        engine={
            "pymupdf": str(getattr(fitz, "VersionBind", "unknown")),
            "pillow": PIL.__version__,
            "reportlab": reportlab.Version,
        },
    )


@router.get("/fonts", response_model=FontCheckResponse)
async def health_check_fonts():
    """
    Report which TrueType font backs each family.

    Without them, raster marks fall back to Pillow's bundled font and
    non-Latin text in PDFs cannot be embedded.
    """
    fonts = {family.value: find_font(family) for family in FontFamily}
    status = HealthStatus.HEALTHY if all(fonts.values()) else HealthStatus.DEGRADED
    return FontCheckResponse(status=status, fonts=fonts)
