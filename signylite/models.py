import base64
import binascii
import re
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from signylite.engine.geometry import Corner
from signylite.engine.render import FontFamily
from signylite.session import MarkMode

_DATA_URL_PREFIX = re.compile(r"^data:[\w.+-]+/[\w.+-]+;base64,", re.IGNORECASE)


def decode_base64_payload(value: Optional[str]) -> bytes:
    """
    Decode base64 content, with or without a ``data:<type>;base64,`` prefix.

    Raises:
        ValueError: If the content is not valid base64
    """
    if not value:
        return b""
    value = _DATA_URL_PREFIX.sub("", value.strip())
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Invalid base64 content: {e}")


class BaseRequest(BaseModel):
    """Base class for all request models - ignores extra fields."""
    model_config = ConfigDict(extra="ignore")


# Enums
class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"


# Request Models
class DocumentPayload(BaseRequest):
    document_base64: str = Field(default="", description="PDF or image bytes, base64 (data URL accepted)")
    filename: Optional[str] = Field(None, max_length=255)

    @field_validator("document_base64")
    @classmethod
    def validate_document(cls, v: str) -> str:
        decode_base64_payload(v)
        return v

    def document_bytes(self) -> bytes:
        return decode_base64_payload(self.document_base64)


class PlacementInput(BaseRequest):
    page: int = Field(default=1, description="1-indexed page; out-of-range values are clamped")
    x: float = Field(default=50.0, description="X in the target's native units")
    y: float = Field(default=50.0, description="Y in the target's native units and origin")
    size: float = Field(default=18.0, gt=0, le=1000)
    color: str = Field(default="#1f6feb", max_length=16, description="#rrggbb; malformed values mean black")
    corner: Optional[Corner] = Field(None, description="Quick-corner preset; overrides x/y")


class InspectRequest(DocumentPayload):
    page: int = Field(default=1, description="Page used for corner presets")
    text: Optional[str] = Field(None, max_length=500, description="Text mark to measure for corner presets")
    font: FontFamily = FontFamily.SANS_OBLIQUE
    size: float = Field(default=18.0, gt=0, le=1000)


class MarkRequest(DocumentPayload):
    mode: MarkMode = MarkMode.TEXT
    text: Optional[str] = Field(None, max_length=500, description="Typed signature or watermark text")
    font: Optional[FontFamily] = Field(None, description="Defaults to sans-oblique for text, sans for watermark")
    image_base64: Optional[str] = Field(None, description="Mark image for image mode (data URL accepted)")
    strokes: Optional[List[List[Tuple[float, float]]]] = Field(
        None,
        description="Drawing mode: strokes as lists of (x, y) canvas pixels",
    )
    opacity: float = Field(default=0.12, description="Watermark opacity; clamped to the allowed range")
    watermark_size: float = Field(default=48.0, gt=0, le=1000)
    placement: PlacementInput = Field(default_factory=PlacementInput)
    audit: bool = Field(default=False, description="Append the audit trail")
    date_stamp: bool = Field(default=False, description="Add a flush-right date (text mode)")

    @field_validator("image_base64")
    @classmethod
    def validate_image(cls, v: Optional[str]) -> Optional[str]:
        decode_base64_payload(v)
        return v

    def image_bytes(self) -> bytes:
        return decode_base64_payload(self.image_base64)


# Response Models
class PageInfo(BaseModel):
    page: int
    width: float
    height: float


class CornerPoint(BaseModel):
    x: float
    y: float


class PlacementInfo(BaseModel):
    page: int
    x: float
    y: float
    size: float
    color: str


class StatusInfo(BaseModel):
    status: str
    message: str = ""
    code: Optional[str] = None


class InspectResponse(BaseModel):
    filename: str
    kind: str
    origin: str
    page_count: int
    byte_length: int
    fingerprint: str
    pages: List[PageInfo]
    target_page: int
    corners: Dict[str, CornerPoint]
    mode: str
    placement: PlacementInfo
    status: StatusInfo


class HealthResponse(BaseModel):
    status: HealthStatus
    version: str
    engine: Dict[str, str]


class FontCheckResponse(BaseModel):
    status: HealthStatus
    fonts: Dict[str, Optional[str]]
