"""Pydantic models shared across the validation and remediation stages.

Every model is frozen: a report or result is built once and handed to the
caller, and the pipeline keeps no reference to it afterwards.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ImageDescriptor(BaseModel):
    """One embedded image row from the image enumeration tool."""

    model_config = ConfigDict(frozen=True)

    page: int
    index: int
    image_type: str = "image"
    width: int = 0
    height: int = 0
    color_space: str
    components: int = 0
    bits_per_component: int
    encoding: str = ""
    object_id: str = ""
    horizontal_dpi: int
    vertical_dpi: int
    encoded_size: str = ""


class ImageAnalysis(BaseModel):
    """Aggregate result of the image compliance analyzer."""

    model_config = ConfigDict(frozen=True)

    total_images: int = 0
    valid_images: int = 0
    resolution_issues: tuple[str, ...] = ()
    color_issues: tuple[str, ...] = ()
    images: tuple[ImageDescriptor, ...] = ()

    @property
    def compliant(self) -> bool:
        return not self.resolution_issues and not self.color_issues


class StructureInfo(BaseModel):
    """Trailer / object graph findings from the structural inspector."""

    model_config = ConfigDict(frozen=True)

    page_count: int | None = None
    encrypted: bool = False
    has_forms: bool = False
    has_embedded_files: bool = False
    has_javascript: bool = False
    has_external_links: bool = False
    pdf_version: str = ""
    metadata: dict[str, str] = Field(default_factory=dict)


class OCRDetection(BaseModel):
    """Outcome of the OCR heuristic. Not a certified classifier."""

    model_config = ConfigDict(frozen=True)

    has_ocr: bool
    confidence: float
    details: dict[str, Any] = Field(default_factory=dict)


class CheckResult(BaseModel):
    """One check category. ``valid=None`` means the check could not run."""

    model_config = ConfigDict(frozen=True)

    valid: bool | None
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


class ValidationReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    filename: str
    file_size: int
    valid: bool
    is_processable: bool
    has_ocr: bool = False
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    reason_codes: tuple[str, ...] = ()
    checks: dict[str, CheckResult] = Field(default_factory=dict)
    summary: str = ""

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class RemediationAttempt(BaseModel):
    """One entry in the remediation attempt log."""

    model_config = ConfigDict(frozen=True)

    strategy_name: str
    succeeded: bool
    resulting_size_bytes: int = 0
    error_message: str | None = None


class ComplianceSnapshot(BaseModel):
    """Verifier verdict for one artifact.

    ``analysis_available`` is False when the image enumeration tool could
    not run; ``grayscale`` and ``dpi300`` then carry the best-case
    assumption and a warning explains why.
    """

    model_config = ConfigDict(frozen=True)

    grayscale: bool
    dpi300: bool
    size3mb: bool
    size_bytes: int
    total_images: int = 0
    analysis_available: bool = True
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()

    @property
    def images_compliant(self) -> bool:
        return self.grayscale and self.dpi300

    @property
    def compliant(self) -> bool:
        return self.images_compliant and self.size3mb


class ProcessingResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    buffer: bytes = Field(repr=False)
    original_size: int
    processed_size: int
    compression_ratio: float
    optimizations: tuple[str, ...] = ()
    attempts: tuple[RemediationAttempt, ...] = ()
    size_gate_applied: bool = False
    verification: ComplianceSnapshot

    def to_dict(self) -> dict[str, Any]:
        """Serialise everything except the processed bytes."""
        return self.model_dump(mode="json", exclude={"buffer"})
