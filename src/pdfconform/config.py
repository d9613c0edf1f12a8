"""Application configuration via environment variables."""

from __future__ import annotations

import logging
import sys
import tempfile
from pathlib import Path

import structlog
from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings

# ---------------------------------------------------------------------------
# Defect reason codes
# ---------------------------------------------------------------------------

NOT_PDF = "NOT_PDF"
OCR_DETECTED = "OCR_DETECTED"
BLANK_DOCUMENT = "BLANK_DOCUMENT"
ENCRYPTED = "ENCRYPTED"
INTERACTIVE_FORMS = "INTERACTIVE_FORMS"
EMBEDDED_FILES = "EMBEDDED_FILES"
JAVASCRIPT = "JAVASCRIPT"
VALIDATION_ERROR = "VALIDATION_ERROR"
OVERSIZE = "OVERSIZE"
IMAGE_RESOLUTION = "IMAGE_RESOLUTION"
IMAGE_COLOR = "IMAGE_COLOR"
NO_PAGES = "NO_PAGES"
UNPARSEABLE_STRUCTURE = "UNPARSEABLE_STRUCTURE"

TERMINAL = "terminal"
FIXABLE = "fixable"

# Inferred from the legacy control flow; pending product-owner confirmation.
DEFAULT_DEFECT_POLICY: dict[str, str] = {
    NOT_PDF: TERMINAL,
    OCR_DETECTED: TERMINAL,
    BLANK_DOCUMENT: TERMINAL,
    ENCRYPTED: TERMINAL,
    INTERACTIVE_FORMS: TERMINAL,
    EMBEDDED_FILES: TERMINAL,
    JAVASCRIPT: TERMINAL,
    VALIDATION_ERROR: TERMINAL,
    OVERSIZE: FIXABLE,
    IMAGE_RESOLUTION: FIXABLE,
    IMAGE_COLOR: FIXABLE,
    NO_PAGES: FIXABLE,
    UNPARSEABLE_STRUCTURE: FIXABLE,
}


class ComplianceThresholds(BaseModel):
    """Read-only compliance limits shared by every pipeline run."""

    model_config = ConfigDict(frozen=True)

    max_size_bytes: int = 3 * 1024 * 1024
    required_dpi: int = 300
    required_bits_per_component: int = 8
    required_color_space: str = "gray"
    max_pages_warning: int = 50


class DefectPolicy(BaseModel):
    """Maps defect reason codes to ``terminal`` or ``fixable``.

    Unknown codes are treated as fixable so that a new check never turns
    into a silent hard rejection.
    """

    model_config = ConfigDict(frozen=True)

    table: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_DEFECT_POLICY))

    def is_terminal(self, code: str) -> bool:
        return self.table.get(code, FIXABLE) == TERMINAL


class Settings(BaseSettings):
    # Compliance thresholds
    max_size_bytes: int = 3 * 1024 * 1024
    required_dpi: int = 300
    required_bits_per_component: int = 8
    required_color_space: str = "gray"
    max_pages_warning: int = 50

    # Size gate (single extra compression pass)
    size_gate_color_dpi: int = 150
    size_gate_mono_dpi: int = 300

    # OCR heuristic tunables
    ocr_sample_chars: int = 2000
    ocr_error_ratio_threshold: float = 2.0
    # Single-letter words not counted as OCR artifacts; "" counts every one.
    ocr_single_letter_words: str = "aeiouy"
    ocr_metadata_keywords: list[str] = [
        "scan",
        "scanner",
        "scanned",
        "ocr",
        "abbyy",
        "finereader",
        "tesseract",
        "paperport",
        "scansnap",
        "omnipage",
        "readiris",
    ]

    # Policy table (JSON object in the environment)
    defect_policy: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_DEFECT_POLICY))

    # Local tools
    ghostscript_binary: str = "gs"
    pdfimages_binary: str = "pdfimages"
    pdftotext_binary: str = "pdftotext"
    mutool_binary: str = "mutool"
    tool_timeout_seconds: float = 180.0
    temp_dir: str = ""

    # Cloud conversion services (A is tried before B)
    cloud_a_name: str = "cloud-service-A"
    cloud_a_url: str = ""
    cloud_a_api_key: str = ""
    cloud_b_name: str = "cloud-service-B"
    cloud_b_url: str = ""
    cloud_b_api_key: str = ""
    cloud_timeout_seconds: float = 60.0
    cloud_jpeg_quality: int = 85
    cloud_max_attempts: int = 2
    cloud_backoff_seconds: float = 1.0

    # Pipeline driver
    max_workers: int = 4

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @property
    def thresholds(self) -> ComplianceThresholds:
        return ComplianceThresholds(
            max_size_bytes=self.max_size_bytes,
            required_dpi=self.required_dpi,
            required_bits_per_component=self.required_bits_per_component,
            required_color_space=self.required_color_space,
            max_pages_warning=self.max_pages_warning,
        )

    @property
    def policy(self) -> DefectPolicy:
        table = dict(DEFAULT_DEFECT_POLICY)
        table.update(self.defect_policy)
        return DefectPolicy(table=table)

    @property
    def workspace_dir(self) -> Path:
        if self.temp_dir:
            return Path(self.temp_dir)
        return Path(tempfile.gettempdir()) / "pdfconform"


settings = Settings()


def configure_logging(level: str = "INFO", json_output: bool = False) -> None:
    """Configure structlog for command-line and worker entry points."""
    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )
