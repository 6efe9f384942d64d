"""
Tests for configuration.
"""
import pytest
from pydantic import ValidationError

from signylite.config import Settings


class TestSettings:
    """Tests for Settings parsing."""

    def test_defaults(self, monkeypatch):
        """Defaults bind to loopback and clamp silently."""
        monkeypatch.delenv("SIGNYLITE_HOST", raising=False)
        monkeypatch.delenv("SIGNYLITE_STRICT_PLACEMENT", raising=False)
        settings = Settings(_env_file=None)

        assert settings.host == "127.0.0.1"
        assert settings.strict_placement is False
        assert settings.corner_margin == 36
        assert settings.fallback_mark_width == 200
        assert settings.watermark_min_opacity == 0.05
        assert settings.watermark_max_opacity == 0.4

    def test_env_aliases(self, monkeypatch):
        monkeypatch.setenv("SIGNYLITE_STRICT_PLACEMENT", "true")
        monkeypatch.setenv("SIGNYLITE_CORNER_MARGIN", "24")
        settings = Settings(_env_file=None)

        assert settings.strict_placement is True
        assert settings.corner_margin == 24

    def test_allowed_origins_csv(self, monkeypatch):
        monkeypatch.setenv("SIGNYLITE_ALLOWED_ORIGINS", "http://a.local;http://b.local")
        settings = Settings(_env_file=None)
        assert settings.allowed_origins == ["http://a.local", "http://b.local"]

    def test_allowed_origins_json(self, monkeypatch):
        monkeypatch.setenv("SIGNYLITE_ALLOWED_ORIGINS", '["http://a.local"]')
        settings = Settings(_env_file=None)
        assert settings.allowed_origins == ["http://a.local"]

    def test_inverted_opacity_bounds_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, watermark_min_opacity=0.5, watermark_max_opacity=0.1)
