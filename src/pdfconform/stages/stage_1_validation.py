"""Stage 1: Validation Gate.

Classifies an uploaded document against the compliance thresholds and
decides whether it is accepted, fixable by remediation, or rejected for
good. Checks run in a fixed order:

    1. file_type       libmagic must say application/pdf, otherwise stop.
    2. file_size       oversize is an error but stays fixable.
    3. (a temporary working copy is written for the tool-based checks)
    4. ocr             scanned / OCR text is a terminal rejection; the
                       remaining checks still run for the report.
    5. content         encryption, forms, attachments, scripts are terminal.
    6. page_structure  zero pages is an error, > 50 pages a warning.
    7. images          color / depth / DPI violations are fixable errors.
    8. blank           no images and next to no text (see ``blank_reason``)
                       is a terminal rejection.

Whether a defect is terminal or fixable is read from the ``DefectPolicy``
table. A check whose tool is missing reports ``valid=None`` with a warning
and never blocks the document.

``validate`` never raises.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path

import structlog

from pdfconform.config import (
    BLANK_DOCUMENT,
    EMBEDDED_FILES,
    ENCRYPTED,
    IMAGE_COLOR,
    IMAGE_RESOLUTION,
    INTERACTIVE_FORMS,
    JAVASCRIPT,
    NO_PAGES,
    NOT_PDF,
    OCR_DETECTED,
    OVERSIZE,
    UNPARSEABLE_STRUCTURE,
    VALIDATION_ERROR,
    ComplianceThresholds,
    DefectPolicy,
)
from pdfconform.errors import ToolExecutionError, ToolUnavailableError
from pdfconform.models import CheckResult, ImageAnalysis, StructureInfo, ValidationReport
from pdfconform.stages.stage_0a_inspection import (
    PDF_MIME,
    FileTypeInspector,
    ImageComplianceAnalyzer,
    StructuralInspector,
    TextExtractor,
)
from pdfconform.stages.stage_0b_ocr_heuristic import OCRHeuristicDetector
from pdfconform.tools.workspace import Workspace

log = structlog.get_logger(__name__)

# Fragments that suggest program source pasted into the document body.
CODE_PATTERNS: tuple[str, ...] = (
    "function(",
    "var ",
    "const ",
    "let ",
    "if (",
    "for (",
    "while (",
    "class ",
    "<?php",
    "<script",
    "console.log",
    "document.",
    "window.",
)
CODE_PATTERN_WARNING_MIN = 3

# Blank-document limits, applied only when the document has no images.
BLANK_MIN_CHARS = 10
BLANK_MIN_MEANINGFUL_CHARS = 5
BLANK_MIN_CHARS_PER_PAGE = 3

_NON_WORD = re.compile(r"[^\w\s]")
_FILLER = re.compile(r"[\s.\-_|]+")


def blank_reason(text: str, page_count: int | None = None) -> str | None:
    """Return why *text* counts as a blank document, or ``None``.

    Punctuation is stripped first, so a page of leader dots or rules is as
    blank as an empty one.
    """
    clean = _NON_WORD.sub("", " ".join(text.split())).strip()
    if not clean:
        return "no text"
    if len(clean) < BLANK_MIN_CHARS:
        return f"only {len(clean)} character(s) of text"
    meaningful = _FILLER.sub("", clean)
    if len(meaningful) < BLANK_MIN_MEANINGFUL_CHARS:
        return "only filler characters"
    if page_count and page_count > 1 and len(clean) / page_count < BLANK_MIN_CHARS_PER_PAGE:
        return f"{len(clean) / page_count:.1f} characters per page over {page_count} pages"
    return None


# ---------------------------------------------------------------------------
# Mutable accumulator used while a single report is being built
# ---------------------------------------------------------------------------


@dataclass
class _ReportBuilder:
    filename: str
    file_size: int
    policy: DefectPolicy
    valid: bool = True
    is_processable: bool = True
    has_ocr: bool = False
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    reason_codes: list[str] = field(default_factory=list)
    checks: dict[str, CheckResult] = field(default_factory=dict)

    def defect(self, code: str, message: str) -> None:
        """Record an error; terminal codes also end processability."""
        self.errors.append(message)
        self.valid = False
        if code not in self.reason_codes:
            self.reason_codes.append(code)
        if self.policy.is_terminal(code):
            self.is_processable = False

    def unknown(self, category: str, message: str, error: Exception) -> None:
        self.warnings.append(message)
        self.checks[category] = CheckResult(
            valid=None,
            message=message,
            details={"error": str(error)},
        )

    def build(self) -> ValidationReport:
        return ValidationReport(
            filename=self.filename,
            file_size=self.file_size,
            valid=self.valid,
            is_processable=self.is_processable,
            has_ocr=self.has_ocr,
            errors=tuple(self.errors),
            warnings=tuple(self.warnings),
            reason_codes=tuple(self.reason_codes),
            checks=dict(self.checks),
            summary=_summarize(self),
        )


def _summarize(builder: _ReportBuilder) -> str:
    if not builder.is_processable:
        if NOT_PDF in builder.reason_codes:
            return "Rejected: the file is not a valid PDF"
        if OCR_DETECTED in builder.reason_codes:
            return (
                "Rejected: the PDF appears to contain scanned / OCR content, "
                "which automatic conversion cannot fix"
            )
        return "Rejected: the PDF violates the document policy and cannot be processed"
    if not builder.valid:
        count = len(builder.errors)
        noun = "error" if count == 1 else "errors"
        return f"PDF is processable with {count} fixable {noun}; automatic conversion required"
    return "PDF meets all specifications"


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class ValidationOrchestrator:
    def __init__(
        self,
        thresholds: ComplianceThresholds,
        policy: DefectPolicy,
        workspace: Workspace,
        file_type: FileTypeInspector,
        structure: StructuralInspector,
        text_extractor: TextExtractor,
        ocr_detector: OCRHeuristicDetector,
        image_analyzer: ImageComplianceAnalyzer,
    ) -> None:
        self._thresholds = thresholds
        self._policy = policy
        self._workspace = workspace
        self._file_type = file_type
        self._structure = structure
        self._text = text_extractor
        self._ocr = ocr_detector
        self._images = image_analyzer

    def validate(self, buffer: bytes, original_name: str = "document.pdf") -> ValidationReport:
        """Produce one immutable report for *buffer*. Never raises."""
        log.info("validation_started", filename=original_name, size_bytes=len(buffer))
        builder = _ReportBuilder(
            filename=original_name,
            file_size=len(buffer),
            policy=self._policy,
        )

        try:
            if not self._check_file_type(buffer, builder):
                report = builder.build()
                log.info("validation_rejected_not_pdf", filename=original_name)
                return report

            self._check_file_size(buffer, builder)

            with self._workspace.scoped_artifact("validate", data=buffer) as working_copy:
                structure = self._inspect_structure(working_copy, builder)
                text = self._check_ocr(working_copy, structure, builder)
                self._check_content(structure, text, builder)
                self._check_page_structure(structure, builder)
                analysis = self._check_images(working_copy, builder)
                self._check_blank(text, analysis, structure, builder)

        except Exception as exc:
            log.error("validation_unexpected_error", filename=original_name, error=str(exc))
            builder.defect(VALIDATION_ERROR, f"Validation error: {exc}")

        report = builder.build()
        log.info(
            "validation_complete",
            filename=original_name,
            valid=report.valid,
            is_processable=report.is_processable,
            errors=len(report.errors),
            warnings=len(report.warnings),
        )
        return report

    # -- 1. file type --------------------------------------------------------

    def _check_file_type(self, buffer: bytes, builder: _ReportBuilder) -> bool:
        try:
            mime = self._file_type.detect(buffer)
            method = "libmagic"
        except ToolUnavailableError as exc:
            # Signature sniffing keeps the gate usable without libmagic.
            mime = PDF_MIME if self._file_type.has_pdf_signature(buffer) else "unknown"
            method = "signature"
            builder.warnings.append(f"File type detected from signature only: {exc}")

        if mime != PDF_MIME:
            builder.checks["file_type"] = CheckResult(
                valid=False,
                message=f"Not a valid PDF (detected {mime})",
                details={"mime_type": mime, "method": method},
            )
            builder.defect(NOT_PDF, f"File is not a valid PDF (detected type: {mime})")
            return False

        builder.checks["file_type"] = CheckResult(
            valid=True,
            message="File is a PDF",
            details={"mime_type": mime, "method": method},
        )
        return True

    # -- 2. file size --------------------------------------------------------

    def _check_file_size(self, buffer: bytes, builder: _ReportBuilder) -> None:
        size = len(buffer)
        limit = self._thresholds.max_size_bytes
        details = {
            "size_bytes": size,
            "max_size_bytes": limit,
            "size_mb": round(size / (1024 * 1024), 2),
        }
        if size > limit:
            message = (
                f"File size {details['size_mb']} MB exceeds the "
                f"{limit / (1024 * 1024):.0f} MB limit"
            )
            builder.checks["file_size"] = CheckResult(valid=False, message=message, details=details)
            builder.defect(OVERSIZE, message)
            return
        builder.checks["file_size"] = CheckResult(
            valid=True, message="File size within limit", details=details
        )

    # -- structure (shared by OCR, content and page checks) ------------------

    def _inspect_structure(self, path: Path, builder: _ReportBuilder) -> StructureInfo | None:
        try:
            return self._structure.inspect(path)
        except ToolUnavailableError as exc:
            builder.unknown("content", "Could not complete structural analysis", exc)
        except ToolExecutionError as exc:
            builder.checks["content"] = CheckResult(
                valid=False,
                message="PDF structure could not be parsed",
                details={"error": str(exc)},
            )
            builder.defect(UNPARSEABLE_STRUCTURE, f"PDF structure is damaged: {exc}")
        return None

    # -- 4. OCR --------------------------------------------------------------

    def _check_ocr(
        self,
        path: Path,
        structure: StructureInfo | None,
        builder: _ReportBuilder,
    ) -> str | None:
        if structure is not None and structure.encrypted and structure.page_count is None:
            builder.checks["ocr"] = CheckResult(
                valid=None,
                message="OCR analysis skipped for an encrypted PDF",
            )
            return None

        try:
            text = self._text.extract(path)
        except (ToolUnavailableError, ToolExecutionError) as exc:
            builder.unknown("ocr", "Could not extract text for OCR analysis", exc)
            return None

        detection = self._ocr.classify_text(
            text, structure.metadata if structure is not None else {}
        )
        details = {"confidence": detection.confidence, **detection.details}
        if detection.has_ocr:
            builder.has_ocr = True
            builder.checks["ocr"] = CheckResult(
                valid=False,
                message=f"Scanned / OCR content detected (confidence {detection.confidence:.0f}%)",
                details=details,
            )
            builder.defect(
                OCR_DETECTED,
                f"PDF appears to contain scanned or OCR text "
                f"(confidence {detection.confidence:.0f}%)",
            )
        else:
            builder.checks["ocr"] = CheckResult(
                valid=True, message="No OCR content detected", details=details
            )
        return text

    # -- 5. content / policy -------------------------------------------------

    def _check_content(
        self,
        structure: StructureInfo | None,
        text: str | None,
        builder: _ReportBuilder,
    ) -> None:
        if structure is None:
            return

        findings = {
            "encrypted": structure.encrypted,
            "has_forms": structure.has_forms,
            "has_embedded_files": structure.has_embedded_files,
            "has_javascript": structure.has_javascript,
            "has_external_links": structure.has_external_links,
        }
        violations = 0
        if structure.encrypted:
            violations += 1
            builder.defect(ENCRYPTED, "PDF is encrypted or password-protected")
        if structure.has_forms:
            violations += 1
            builder.defect(INTERACTIVE_FORMS, "PDF contains interactive forms")
        if structure.has_embedded_files:
            violations += 1
            builder.defect(EMBEDDED_FILES, "PDF contains embedded files")
        if structure.has_javascript:
            violations += 1
            builder.defect(JAVASCRIPT, "PDF contains embedded JavaScript")
        if structure.has_external_links:
            builder.warnings.append("PDF contains external links")

        code_hits: list[str] = []
        if text:
            lowered = text.lower()
            code_hits = [p for p in CODE_PATTERNS if p in lowered]
            if len(code_hits) >= CODE_PATTERN_WARNING_MIN:
                builder.warnings.append(
                    f"PDF text appears to contain program code: {', '.join(code_hits[:3])}"
                )
        findings["code_patterns"] = code_hits

        builder.checks["content"] = CheckResult(
            valid=violations == 0,
            message=(
                "No policy-restricted content found"
                if violations == 0
                else f"{violations} policy violation(s) found"
            ),
            details=findings,
        )

    # -- 6. page structure ---------------------------------------------------

    def _check_page_structure(
        self,
        structure: StructureInfo | None,
        builder: _ReportBuilder,
    ) -> None:
        if structure is None or structure.page_count is None:
            builder.checks["page_structure"] = CheckResult(
                valid=None,
                message="Page count unavailable",
            )
            return

        pages = structure.page_count
        details = {"page_count": pages, "pdf_version": structure.pdf_version}
        if pages == 0:
            builder.checks["page_structure"] = CheckResult(
                valid=False, message="PDF has no pages", details=details
            )
            builder.defect(NO_PAGES, "PDF has no valid pages")
            return

        if pages > self._thresholds.max_pages_warning:
            builder.warnings.append(
                f"PDF has {pages} pages (more than {self._thresholds.max_pages_warning}); "
                "the result may be large"
            )
        builder.checks["page_structure"] = CheckResult(
            valid=True, message=f"{pages} page(s)", details=details
        )

    # -- 7. images -----------------------------------------------------------

    def _check_images(self, path: Path, builder: _ReportBuilder) -> ImageAnalysis | None:
        try:
            analysis = self._images.analyze(path)
        except (ToolUnavailableError, ToolExecutionError) as exc:
            builder.unknown("images", "Could not analyze embedded images", exc)
            return None

        details = {
            "total_images": analysis.total_images,
            "valid_images": analysis.valid_images,
            "resolution_issues": list(analysis.resolution_issues),
            "color_issues": list(analysis.color_issues),
            "images": [img.model_dump() for img in analysis.images],
        }

        if analysis.total_images == 0:
            builder.warnings.append("PDF contains no detectable images")
            builder.checks["images"] = CheckResult(
                valid=True, message="No embedded images", details=details
            )
            return analysis

        for issue in analysis.resolution_issues:
            builder.defect(IMAGE_RESOLUTION, issue)
        for issue in analysis.color_issues:
            builder.defect(IMAGE_COLOR, issue)

        builder.checks["images"] = CheckResult(
            valid=analysis.compliant,
            message=(
                f"All {analysis.total_images} image(s) compliant"
                if analysis.compliant
                else f"{analysis.total_images - analysis.valid_images} of "
                f"{analysis.total_images} image(s) need conversion"
            ),
            details=details,
        )
        return analysis

    # -- blank document ------------------------------------------------------

    @staticmethod
    def _check_blank(
        text: str | None,
        analysis: ImageAnalysis | None,
        structure: StructureInfo | None,
        builder: _ReportBuilder,
    ) -> None:
        # Only decidable when both text and images were actually inspected.
        if text is None or analysis is None or analysis.total_images > 0:
            return
        reason = blank_reason(text, structure.page_count if structure is not None else None)
        if reason is not None:
            log.info("validation_blank_document", reason=reason)
            builder.defect(BLANK_DOCUMENT, f"Blank PDFs are not allowed ({reason})")


# ---------------------------------------------------------------------------
# Human-readable report
# ---------------------------------------------------------------------------


def _flag(value: bool | None) -> str:
    if value is None:
        return "UNKNOWN"
    return "OK" if value else "FAIL"


def render_report(report: ValidationReport) -> str:
    """Render *report* as a multi-line plain-text report."""
    if not report.is_processable:
        status = "REJECTED"
    elif not report.valid:
        status = "FIXABLE"
    else:
        status = "ACCEPTED"

    lines = [
        f"PDF validation report: {report.filename}",
        "=" * 60,
        f"Status:      {status}",
        f"Size:        {report.file_size / (1024 * 1024):.2f} MB ({report.file_size} bytes)",
        f"Processable: {'yes' if report.is_processable else 'no'}",
        f"OCR content: {'yes' if report.has_ocr else 'no'}",
        f"Summary:     {report.summary}",
        "",
        "Checks:",
    ]
    for category, check in report.checks.items():
        lines.append(f"  [{_flag(check.valid):7}] {category}: {check.message}")

    if report.errors:
        lines.append("")
        lines.append("Errors:")
        lines.extend(f"  - {error}" for error in report.errors)
    if report.warnings:
        lines.append("")
        lines.append("Warnings:")
        lines.extend(f"  - {warning}" for warning in report.warnings)

    images = report.checks.get("images")
    rows = images.details.get("images", []) if images is not None else []
    if rows:
        lines.append("")
        lines.append("Images:")
        lines.append(f"  {'page':>4} {'num':>4} {'color':<6} {'bpc':>3} {'x-ppi':>6} {'y-ppi':>6}")
        for row in rows:
            lines.append(
                f"  {row['page']:>4} {row['index']:>4} {row['color_space']:<6} "
                f"{row['bits_per_component']:>3} {row['horizontal_dpi']:>6} "
                f"{row['vertical_dpi']:>6}"
            )

    if report.reason_codes:
        lines.append("")
        lines.append(f"Reason codes: {', '.join(report.reason_codes)}")
    return "\n".join(lines)
