"""
Report Service Configuration Module

Centralized configuration management with Pydantic validation.
All environment variables are validated at startup to catch misconfigurations early.
"""

import base64
import binascii
from functools import lru_cache
from pathlib import Path
from typing import List, Optional, Tuple

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


# Short and long edge of supported page formats, in millimeters
PAGE_FORMATS_MM = {
    "A3": (297.0, 420.0),
    "A4": (210.0, 297.0),
    "A5": (148.0, 210.0),
    "Letter": (215.9, 279.4),
    "Legal": (215.9, 355.6),
}


class ReportSettings(BaseSettings):
    """
    Report service configuration with validation.

    All settings can be overridden via environment variables.
    Validation happens at startup to fail fast on misconfiguration.
    """

    # === Upstream tracker ===
    cbm_base_url: Optional[str] = Field(
        default=None,
        description="Base URL of the tracker instance serving tasks and previews"
    )
    cbm_api_key: Optional[str] = Field(
        default=None,
        description="Base64 encoded 'username:password' used for API and browser login"
    )

    # === Security ===
    secret: Optional[str] = Field(
        default=None,
        description="HS256 secret used to verify request tokens"
    )
    token_max_age_ms: int = Field(
        default=15000,
        ge=1000,
        le=600000,
        description="Maximum token age in milliseconds"
    )

    # === Concurrency & Limits ===
    max_process_num: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Active pipeline runs above which /health reports overloaded"
    )
    request_timeout_seconds: int = Field(
        default=1800,
        ge=60,
        le=7200,
        description="End-to-end timeout for one report request (60-7200)"
    )
    tool_timeout_seconds: int = Field(
        default=300,
        ge=10,
        le=3600,
        description="Timeout for each external tool invocation"
    )

    # === Filesystem ===
    pdf_worker_home: Path = Field(
        default_factory=lambda: Path.home() / ".pdfworker",
        description="Scratch directory holding config/, logs/ and templates/"
    )

    # === Browser ===
    chrome_executable_path: Optional[str] = Field(
        default=None,
        description="Chromium/Chrome binary; Playwright's bundled build when unset"
    )
    browser_headless: bool = Field(default=True)
    navigation_timeout_ms: int = Field(
        default=120000,
        ge=1000,
        description="Playwright navigation timeout in milliseconds"
    )
    page_format: str = Field(default="A4", description="Paper format for captures")
    page_margin: str = Field(default="50px", description="Margin applied on all four sides")
    exclude_selector: str = Field(
        default=".pdf-exclude, [data-pdf-exclude]",
        description="Elements removed from the preview before capture"
    )
    metrics_selector: str = Field(
        default="#metrics",
        description="Container whose input fields are reported as metrics"
    )
    toc_heading: str = Field(default="目录", description="Heading printed on TOC pages")

    # === External tools ===
    pdftocgen_bin: str = Field(default="pdftocgen")
    pdftocio_bin: str = Field(default="pdftocio")
    soffice_bin: str = Field(default="soffice")

    # === Logging ===
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="simple", description="simple or json")

    @field_validator("cbm_base_url")
    @classmethod
    def validate_url_format(cls, v: Optional[str]) -> Optional[str]:
        """Basic URL format validation."""
        if v is None:
            return None
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Invalid URL format: {v}")
        return v.rstrip("/")

    @field_validator("page_format")
    @classmethod
    def validate_page_format(cls, v: str) -> str:
        """Normalise the page format to a known Chromium paper name."""
        for name in PAGE_FORMATS_MM:
            if name.lower() == v.lower():
                return name
        raise ValueError(f"page_format must be one of: {', '.join(PAGE_FORMATS_MM)}")

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v_lower = v.lower()
        if v_lower not in {"simple", "json"}:
            raise ValueError("log_format must be 'simple' or 'json'")
        return v_lower

    @property
    def config_dir(self) -> Path:
        return self.pdf_worker_home / "config"

    @property
    def logs_dir(self) -> Path:
        return self.pdf_worker_home / "logs"

    @property
    def templates_dir(self) -> Path:
        return self.pdf_worker_home / "templates"

    @property
    def recipe_path(self) -> Path:
        return self.config_dir / "recipe.toml"

    @property
    def short_edge_mm(self) -> float:
        """Short edge of the configured paper format."""
        return PAGE_FORMATS_MM[self.page_format][0]

    @property
    def margins(self) -> dict:
        return {
            "top": self.page_margin,
            "right": self.page_margin,
            "bottom": self.page_margin,
            "left": self.page_margin,
        }

    def validate_startup_config(self) -> List[str]:
        """
        Validate configuration is complete enough to serve requests.

        Returns list of warning/error messages.
        """
        issues = []

        if not self.cbm_base_url:
            issues.append("CRITICAL: CBM_BASE_URL environment variable is required")
        if not self.cbm_api_key:
            issues.append("CRITICAL: CBM_API_KEY environment variable is required")
        if not self.secret:
            issues.append("CRITICAL: SECRET environment variable is required")
        if not self.recipe_path.exists():
            issues.append(f"CRITICAL: recipe.toml does not exist: {self.recipe_path}")
        if not self.templates_dir.exists():
            issues.append(f"WARNING: cover templates directory missing: {self.templates_dir}")

        return issues

    class Config:
        env_prefix = ""  # No prefix, use exact env var names
        case_sensitive = False  # CBM_BASE_URL = cbm_base_url
        env_file = ".env"
        extra = "ignore"


def decode_credentials(api_key: Optional[str]) -> Tuple[str, str]:
    """
    Decode the base64 'username:password' pair used for the browser login.

    Raises:
        ValueError: If the key is missing or not in the expected format
    """
    if not api_key:
        raise ValueError("CBM_API_KEY environment variable is required")
    try:
        decoded = base64.b64decode(api_key, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise ValueError("Invalid CBM_API_KEY format. Expected base64 encoded username:password") from e

    username, _, password = decoded.partition(":")
    if not username or not password:
        raise ValueError("Invalid CBM_API_KEY format. Expected base64 encoded username:password")
    return username, password


@lru_cache()
def get_settings() -> ReportSettings:
    """
    Get cached settings instance.

    Settings are loaded once and cached for performance.
    Use this function to access configuration throughout the app.
    """
    return ReportSettings()


def validate_config_on_startup() -> None:
    """
    Validate configuration at application startup.

    Raises ValueError with details if config is invalid.
    Logs warnings for non-critical issues.
    """
    import logging
    logger = logging.getLogger(__name__)

    try:
        settings = get_settings()
    except Exception as e:
        raise ValueError(f"Configuration validation failed: {e}")

    issues = settings.validate_startup_config()

    for issue in issues:
        if issue.startswith("CRITICAL"):
            raise ValueError(issue)
        else:
            logger.warning(issue)

    settings.logs_dir.mkdir(parents=True, exist_ok=True)

    # Log loaded configuration (redact secrets)
    logger.info(f"Configuration loaded: cbm_base_url={settings.cbm_base_url}")
    logger.info(f"  pdf_worker_home={settings.pdf_worker_home}")
    logger.info(f"  max_process_num={settings.max_process_num}")
    logger.info(f"  request_timeout={settings.request_timeout_seconds}s")
    logger.info(f"  page_format={settings.page_format}, margin={settings.page_margin}")


# Convenience exports
settings = get_settings()
