"""Pipeline driver wiring validation, remediation and verification.

A ``CompliancePipeline`` is assembled once (``build_pipeline``) from a
``Settings`` value and a capabilities record, and is then shared by every
document. Runs keep their state on the stack, so concurrent runs only
share the temp directory.

``submit`` executes ``process`` on a worker thread and returns a
``PipelineRun`` handle; ``PipelineRun.cancel`` sets the run's event, which
the remediation engine checks between stages.
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict

from pdfconform.cloud.conversion_client import CloudConversionClient
from pdfconform.config import Settings
from pdfconform.models import ProcessingResult, ValidationReport
from pdfconform.stages.stage_0a_inspection import (
    FileTypeInspector,
    ImageComplianceAnalyzer,
    StructuralInspector,
    TextExtractor,
)
from pdfconform.stages.stage_0b_ocr_heuristic import OCRHeuristicDetector
from pdfconform.stages.stage_1_validation import ValidationOrchestrator
from pdfconform.stages.stage_2_conversion import build_default_plan
from pdfconform.stages.stage_3_remediation import RemediationEngine
from pdfconform.stages.stage_4_verification import ComplianceVerifier
from pdfconform.tools.capabilities import ToolCapabilities, detect_capabilities
from pdfconform.tools.runner import ToolRunner
from pdfconform.tools.workspace import Workspace

log = structlog.get_logger(__name__)

ACCEPTED = "accepted"
REMEDIATED = "remediated"
REJECTED = "rejected"


class PipelineOutcome(BaseModel):
    """Validation report plus, when remediation ran, its result."""

    model_config = ConfigDict(frozen=True)

    status: str
    report: ValidationReport
    result: ProcessingResult | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "report": self.report.to_dict(),
            "result": self.result.to_dict() if self.result is not None else None,
            "error": self.error,
        }


@dataclass
class PipelineRun:
    """Handle for one document submitted to the worker pool."""

    filename: str
    future: Future
    cancel_event: threading.Event = field(default_factory=threading.Event)

    def cancel(self) -> None:
        """Request cancellation; takes effect at the next stage boundary."""
        self.cancel_event.set()
        self.future.cancel()

    def result(self, timeout: float | None = None) -> PipelineOutcome:
        return self.future.result(timeout=timeout)

    def done(self) -> bool:
        return self.future.done()


class CompliancePipeline:
    def __init__(
        self,
        orchestrator: ValidationOrchestrator,
        engine: RemediationEngine,
        verifier: ComplianceVerifier,
        capabilities: ToolCapabilities,
        cloud_clients: list[CloudConversionClient] | None = None,
        max_workers: int = 4,
    ) -> None:
        self.orchestrator = orchestrator
        self.engine = engine
        self.verifier = verifier
        self.capabilities = capabilities
        self._cloud_clients = list(cloud_clients or [])
        self._max_workers = max_workers
        self._executor: ThreadPoolExecutor | None = None
        self._lock = threading.Lock()

    # -- synchronous operations ----------------------------------------------

    def validate(self, buffer: bytes, filename: str = "document.pdf") -> ValidationReport:
        return self.orchestrator.validate(buffer, filename)

    def remediate(
        self,
        buffer: bytes,
        filename: str = "document.pdf",
        cancel_event: threading.Event | None = None,
    ) -> ProcessingResult:
        return self.engine.remediate(buffer, filename, cancel_event=cancel_event)

    def process(
        self,
        buffer: bytes,
        filename: str = "document.pdf",
        cancel_event: threading.Event | None = None,
    ) -> PipelineOutcome:
        """Validate, then remediate when the document is fixable.

        ``RemediationExhaustedError`` and ``PipelineCancelledError`` propagate.
        """
        structlog.contextvars.bind_contextvars(filename=filename)
        try:
            report = self.validate(buffer, filename)
            if not report.is_processable:
                log.info("pipeline_rejected", reason_codes=list(report.reason_codes))
                return PipelineOutcome(status=REJECTED, report=report)
            if report.valid:
                log.info("pipeline_accepted")
                return PipelineOutcome(status=ACCEPTED, report=report)

            result = self.remediate(buffer, filename, cancel_event=cancel_event)
            log.info("pipeline_remediated", compliant=result.verification.compliant)
            return PipelineOutcome(status=REMEDIATED, report=report, result=result)
        finally:
            structlog.contextvars.unbind_contextvars("filename")

    # -- background execution ------------------------------------------------

    def submit(self, buffer: bytes, filename: str = "document.pdf") -> PipelineRun:
        """Run :meth:`process` on a worker thread."""
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_workers,
                    thread_name_prefix="pdfconform",
                )
            executor = self._executor

        cancel_event = threading.Event()
        future = executor.submit(self.process, buffer, filename, cancel_event)
        log.info("pipeline_submitted", filename=filename)
        return PipelineRun(filename=filename, future=future, cancel_event=cancel_event)

    def close(self) -> None:
        with self._lock:
            if self._executor is not None:
                self._executor.shutdown(wait=True)
                self._executor = None
        for client in self._cloud_clients:
            client.close()

    def __enter__(self) -> CompliancePipeline:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def build_cloud_clients(settings: Settings) -> list[CloudConversionClient]:
    """Clients for services A and B, in priority order."""
    return [
        CloudConversionClient(
            name=name,
            endpoint=url,
            api_key=key,
            timeout=settings.cloud_timeout_seconds,
            max_attempts=settings.cloud_max_attempts,
            backoff_seconds=settings.cloud_backoff_seconds,
        )
        for name, url, key in (
            (settings.cloud_a_name, settings.cloud_a_url, settings.cloud_a_api_key),
            (settings.cloud_b_name, settings.cloud_b_url, settings.cloud_b_api_key),
        )
    ]


def build_pipeline(
    settings: Settings,
    capabilities: ToolCapabilities | None = None,
    cloud_clients: list[CloudConversionClient] | None = None,
) -> CompliancePipeline:
    """Assemble a pipeline. Tool detection runs here and nowhere else."""
    if capabilities is None:
        capabilities = detect_capabilities(settings)
    if cloud_clients is None:
        cloud_clients = build_cloud_clients(settings)

    thresholds = settings.thresholds
    runner = ToolRunner(capabilities, timeout=settings.tool_timeout_seconds)
    workspace = Workspace(settings.workspace_dir)

    text_extractor = TextExtractor(runner)
    analyzer = ImageComplianceAnalyzer(runner, thresholds)
    orchestrator = ValidationOrchestrator(
        thresholds=thresholds,
        policy=settings.policy,
        workspace=workspace,
        file_type=FileTypeInspector(),
        structure=StructuralInspector(),
        text_extractor=text_extractor,
        ocr_detector=OCRHeuristicDetector(
            text_extractor,
            sample_chars=settings.ocr_sample_chars,
            error_ratio_threshold=settings.ocr_error_ratio_threshold,
            single_letter_words=settings.ocr_single_letter_words,
            metadata_keywords=settings.ocr_metadata_keywords,
        ),
        image_analyzer=analyzer,
    )
    verifier = ComplianceVerifier(analyzer, thresholds, workspace)
    plan = build_default_plan(
        runner,
        workspace,
        thresholds,
        cloud_clients=cloud_clients,
        jpeg_quality=settings.cloud_jpeg_quality,
        size_gate_color_dpi=settings.size_gate_color_dpi,
        size_gate_mono_dpi=settings.size_gate_mono_dpi,
    )
    engine = RemediationEngine(plan, verifier, thresholds)

    log.info(
        "pipeline_built",
        workspace=str(workspace.root),
        cloud_services=[c.name for c in cloud_clients if c.configured],
    )
    return CompliancePipeline(
        orchestrator=orchestrator,
        engine=engine,
        verifier=verifier,
        capabilities=capabilities,
        cloud_clients=cloud_clients,
        max_workers=settings.max_workers,
    )
