"""
Configuration module - loads settings from environment variables and an
optional .env file.

The engine never reads these itself; MarkingSession hands the relevant
values to the engine objects it builds.
"""
import json
import logging
from functools import lru_cache
from typing import Annotated, Any, List

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

logger = logging.getLogger(__name__)

LOOPBACK_HOSTS = ("127.0.0.1", "localhost", "::1")


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Environment
    environment: str = Field(default="development", alias="SIGNYLITE_ENVIRONMENT")
    debug: bool = Field(default=False, alias="SIGNYLITE_DEBUG")
    log_level: str = Field(default="INFO", alias="SIGNYLITE_LOG_LEVEL")

    # Local HTTP adapter
    host: str = Field(default="127.0.0.1", alias="SIGNYLITE_HOST")
    port: int = Field(default=8765, alias="SIGNYLITE_PORT")
    allowed_origins: Annotated[List[str], NoDecode] = Field(default=[], alias="SIGNYLITE_ALLOWED_ORIGINS")
    max_upload_bytes: int = Field(
        default=50 * 1024 * 1024,
        alias="SIGNYLITE_MAX_UPLOAD_BYTES",
        description="Largest accepted document, after base64 decoding",
    )

    # Placement
    strict_placement: bool = Field(
        default=False,
        alias="SIGNYLITE_STRICT_PLACEMENT",
        description="Reject out-of-range pages instead of clamping them",
    )
    corner_margin: float = Field(default=36.0, alias="SIGNYLITE_CORNER_MARGIN")
    corner_line_height: float = Field(default=50.0, alias="SIGNYLITE_CORNER_LINE_HEIGHT")
    fallback_mark_width: float = Field(default=200.0, alias="SIGNYLITE_FALLBACK_MARK_WIDTH")
    stamp_margin: float = Field(default=50.0, alias="SIGNYLITE_STAMP_MARGIN")

    # Raster marks
    raster_reference_size: float = Field(default=36.0, gt=0, alias="SIGNYLITE_RASTER_REFERENCE_SIZE")
    raster_min_scale: float = Field(default=0.5, gt=0, alias="SIGNYLITE_RASTER_MIN_SCALE")

    # Freehand canvas
    stroke_width: int = Field(default=3, ge=1, alias="SIGNYLITE_STROKE_WIDTH")
    canvas_width: int = Field(default=500, ge=1, alias="SIGNYLITE_CANVAS_WIDTH")
    canvas_height: int = Field(default=200, ge=1, alias="SIGNYLITE_CANVAS_HEIGHT")

    # Watermark
    watermark_step_divisor: float = Field(default=6.0, gt=0, alias="SIGNYLITE_WATERMARK_STEP_DIVISOR")
    watermark_min_opacity: float = Field(default=0.05, ge=0, le=1, alias="SIGNYLITE_WATERMARK_MIN_OPACITY")
    watermark_max_opacity: float = Field(default=0.4, ge=0, le=1, alias="SIGNYLITE_WATERMARK_MAX_OPACITY")

    # Audit trail
    audit_line_height: float = Field(default=20.0, gt=0, alias="SIGNYLITE_AUDIT_LINE_HEIGHT")
    audit_include_qr: bool = Field(default=True, alias="SIGNYLITE_AUDIT_INCLUDE_QR")
    audit_environment_label: str = Field(
        default="",
        alias="SIGNYLITE_AUDIT_ENVIRONMENT_LABEL",
        description="Overrides the detected software/platform string on audit pages",
    )

    @field_validator("allowed_origins", mode='before')
    @classmethod
    def _parse_allowed_origins(cls, v: Any) -> List[str]:
        """Parse allowed origins from JSON list, CSV, semicolon-separated string, or list."""
        if v is None:
            return []
        if isinstance(v, list):
            return v
        if isinstance(v, str):
            s = v.strip()
            if not s:
                return []
            if s.startswith("["):
                try:
                    return json.loads(s)
                except json.JSONDecodeError:
                    pass  # Fall through to delimiter parsing
            parts = [p.strip() for p in s.replace(",", ";").split(";")]
            return [p for p in parts if p]
        return []

    @model_validator(mode='after')
    def validate_ranges(self) -> 'Settings':
        """Reject inconsistent bounds and warn about non-loopback binds."""
        if self.watermark_min_opacity > self.watermark_max_opacity:
            raise ValueError(
                f"Watermark opacity bounds are inverted: "
                f"{self.watermark_min_opacity} > {self.watermark_max_opacity}"
            )

        if self.host not in LOOPBACK_HOSTS:
            logger.warning(
                f"Configuration Warning: SIGNYLITE_HOST ('{self.host}') is not a loopback "
                f"address. Documents would be reachable from other machines."
            )

        return self

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# =============================================================================
# CORS Configuration
# =============================================================================

# Local UI dev servers (only in non-production)
DEV_CORS_ORIGINS = [
    "http://localhost:5173",
    "http://localhost:3000",
    "http://127.0.0.1:5173",
    "http://127.0.0.1:3000",
]


def get_cors_origins() -> List[str]:
    """
    Get list of allowed CORS origins.

    Combines:
    1. Origins from SIGNYLITE_ALLOWED_ORIGINS
    2. Development origins (if not in production)
    """
    settings = get_settings()
    origins = set(settings.allowed_origins)

    if not settings.is_production:
        origins.update(DEV_CORS_ORIGINS)

    return sorted(origins)


def is_allowed_origin(origin: str) -> bool:
    """
    Check if an origin is allowed for CORS.

    Only explicitly configured origins and, outside production, local
    dev servers on any port.
    """
    if not origin:
        return False

    if origin in get_cors_origins():
        return True

    if not get_settings().is_production:
        if origin.startswith("http://localhost:") or origin.startswith("http://127.0.0.1:"):
            return True

    return False
