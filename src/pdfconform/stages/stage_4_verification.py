"""Stage 4: Compliance verification.

Re-applies the image analyzer and the size threshold to a fresh working
copy of a buffer. Used between remediation stages and as the final
acceptance gate.
"""

from __future__ import annotations

import structlog

from pdfconform.config import ComplianceThresholds
from pdfconform.errors import ToolExecutionError, ToolUnavailableError
from pdfconform.models import ComplianceSnapshot
from pdfconform.stages.stage_0a_inspection import ImageComplianceAnalyzer
from pdfconform.tools.workspace import Workspace

log = structlog.get_logger(__name__)


class ComplianceVerifier:
    def __init__(
        self,
        analyzer: ImageComplianceAnalyzer,
        thresholds: ComplianceThresholds,
        workspace: Workspace,
    ) -> None:
        self._analyzer = analyzer
        self._thresholds = thresholds
        self._workspace = workspace

    def verify(self, buffer: bytes) -> ComplianceSnapshot:
        size = len(buffer)
        size_ok = size <= self._thresholds.max_size_bytes
        errors: list[str] = []
        if not size_ok:
            errors.append(
                f"File size {size / (1024 * 1024):.2f} MB exceeds the "
                f"{self._thresholds.max_size_bytes / (1024 * 1024):.0f} MB limit"
            )

        with self._workspace.scoped_artifact("verify", data=buffer) as path:
            try:
                analysis = self._analyzer.analyze(path)
            except (ToolUnavailableError, ToolExecutionError) as exc:
                # Best case for what could not be measured.
                log.warning("verification_images_unknown", error=str(exc))
                return ComplianceSnapshot(
                    grayscale=True,
                    dpi300=True,
                    size3mb=size_ok,
                    size_bytes=size,
                    analysis_available=False,
                    errors=tuple(errors),
                    warnings=(f"Image compliance could not be verified: {exc}",),
                )

        errors = [*analysis.resolution_issues, *analysis.color_issues, *errors]
        snapshot = ComplianceSnapshot(
            grayscale=not analysis.color_issues,
            dpi300=not analysis.resolution_issues,
            size3mb=size_ok,
            size_bytes=size,
            total_images=analysis.total_images,
            errors=tuple(errors),
        )
        log.debug(
            "verification_complete",
            grayscale=snapshot.grayscale,
            dpi300=snapshot.dpi300,
            size3mb=snapshot.size3mb,
            size_bytes=size,
        )
        return snapshot
