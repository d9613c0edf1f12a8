"""Pipeline stages for PDF validation and remediation."""

from pdfconform.stages.stage_0a_inspection import (
    FileTypeInspector,
    ImageComplianceAnalyzer,
    StructuralInspector,
    TextExtractor,
)
from pdfconform.stages.stage_0b_ocr_heuristic import OCRHeuristicDetector
from pdfconform.stages.stage_1_validation import ValidationOrchestrator, render_report
from pdfconform.stages.stage_2_conversion import (
    CloudStrategy,
    ConversionOutcome,
    ConversionStrategy,
    GhostscriptStrategy,
    PageRebuildStrategy,
    RemediationPlan,
    StructuralCleanStrategy,
    build_default_plan,
)
from pdfconform.stages.stage_3_remediation import RemediationEngine
from pdfconform.stages.stage_4_verification import ComplianceVerifier
