"""Shared test fixtures."""

import io
import subprocess
from pathlib import Path

import pytest
import structlog
from pypdf import PdfWriter
from pypdf.generic import (
    ArrayObject,
    DictionaryObject,
    FloatObject,
    NameObject,
    TextStringObject,
)

from pdfconform.config import ComplianceThresholds, DefectPolicy, Settings
from pdfconform.errors import ToolUnavailableError
from pdfconform.stages.stage_0a_inspection import (
    FileTypeInspector,
    ImageComplianceAnalyzer,
    StructuralInspector,
    TextExtractor,
)
from pdfconform.stages.stage_0b_ocr_heuristic import OCRHeuristicDetector
from pdfconform.stages.stage_1_validation import ValidationOrchestrator
from pdfconform.stages.stage_4_verification import ComplianceVerifier
from pdfconform.tools.workspace import Workspace


# ---------------------------------------------------------------------------
# Minimal valid file bytes
# ---------------------------------------------------------------------------

# Minimal valid PDF content that libmagic identifies as application/pdf.
MINIMAL_PDF_BYTES = b"""%PDF-1.4
1 0 obj
<< /Type /Catalog /Pages 2 0 R >>
endobj
2 0 obj
<< /Type /Pages /Kids [3 0 R] /Count 1 >>
endobj
3 0 obj
<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] /Contents 4 0 R /Resources << /Font << /F1 5 0 R >> >> >>
endobj
4 0 obj
<< /Length 44 >>
stream
BT /F1 12 Tf 100 700 Td (Test contract) Tj ET
endstream
endobj
5 0 obj
<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>
endobj
xref
0 6
0000000000 65535 f
0000000009 00000 n
0000000058 00000 n
0000000115 00000 n
0000000266 00000 n
0000000360 00000 n
trailer
<< /Size 6 /Root 1 0 R >>
startxref
441
%%EOF"""

NATIVE_TEXT = (
    "MASTER SERVICES AGREEMENT\n\n"
    "This Master Services Agreement is entered into as of the Effective Date by and "
    "between the Customer and the Provider. The Provider shall deliver the services "
    "described in each Statement of Work in a professional manner, consistent with "
    "generally accepted industry standards. Fees are payable within thirty days of "
    "the invoice date. Either party may terminate this Agreement upon written notice "
    "if the other party materially breaches its obligations and fails to cure the "
    "breach within the cure period stated herein.\n"
)


# ---------------------------------------------------------------------------
# Real ``pdfimages -list`` transcripts (poppler 22.x)
# ---------------------------------------------------------------------------

PDFIMAGES_HEADER = (
    "page   num  type   width height color comp bpc  enc interp  object ID x-ppi y-ppi size ratio\n"
    "--------------------------------------------------------------------------------------------\n"
)

PDFIMAGES_COMPLIANT = PDFIMAGES_HEADER + (
    "   1     0 image    2480  3508  gray    1   8  jpeg   no         9  0   300   300  345K 4.0%\n"
)

PDFIMAGES_CMYK_150 = PDFIMAGES_HEADER + (
    "   1     0 image    1240  1754  cmyk    4   8  jpeg   no        10  0   150   150  512K 6.0%\n"
)

PDFIMAGES_MIXED = PDFIMAGES_HEADER + (
    "   1     0 image    2480  3508  gray    1   8  jpeg   no         9  0   300   300  345K 4.0%\n"
    "   2     1 image    1654  2339  rgb     3   8  jpeg   no        14  0   200   200  401K 3.5%\n"
    "   3     2 smask    2480  3508  gray    1   8  image  no        20  0   300   300 1024B 0.0%\n"
)

PDFIMAGES_EMPTY = PDFIMAGES_HEADER


# ---------------------------------------------------------------------------
# Fake tool runner
# ---------------------------------------------------------------------------


class FakeRunner:
    """Stands in for ``ToolRunner``.

    *outputs* maps a tool name to stdout text, an exception to raise, or a
    callable taking the argument list and returning stdout.
    """

    def __init__(self, outputs=None, missing=()):
        self.outputs = dict(outputs or {})
        self.missing = set(missing)
        self.calls: list[tuple[str, list[str]]] = []

    def available(self, tool: str) -> bool:
        return tool not in self.missing

    def run(self, tool, args, timeout=None):
        args = list(args)
        self.calls.append((tool, args))
        if tool in self.missing:
            raise ToolUnavailableError(f"{tool} is not installed")
        value = self.outputs.get(tool, "")
        if callable(value) and not isinstance(value, Exception):
            value = value(args)
        if isinstance(value, Exception):
            raise value
        return subprocess.CompletedProcess([tool, *args], 0, stdout=value, stderr="")

    def calls_for(self, tool: str) -> list[list[str]]:
        return [args for name, args in self.calls if name == tool]


def output_path(args: list[str]) -> Path:
    """Return the ``-sOutputFile=`` target of a Ghostscript argument list."""
    for arg in args:
        if arg.startswith("-sOutputFile="):
            return Path(arg.split("=", 1)[1])
    raise AssertionError(f"no output file in {args}")


# ---------------------------------------------------------------------------
# PDF builders
# ---------------------------------------------------------------------------


def _to_bytes(writer: PdfWriter) -> bytes:
    buf = io.BytesIO()
    writer.write(buf)
    return buf.getvalue()


def blank_pdf_bytes(pages: int = 1, metadata: dict | None = None) -> bytes:
    writer = PdfWriter()
    for _ in range(pages):
        writer.add_blank_page(width=612, height=792)
    if metadata:
        writer.add_metadata(metadata)
    return _to_bytes(writer)


def encrypted_pdf_bytes() -> bytes:
    writer = PdfWriter()
    writer.add_blank_page(width=612, height=792)
    writer.encrypt(user_password="s3cret", owner_password="owner-s3cret")
    return _to_bytes(writer)


def form_pdf_bytes() -> bytes:
    writer = PdfWriter()
    page = writer.add_blank_page(width=612, height=792)
    field = DictionaryObject(
        {
            NameObject("/Type"): NameObject("/Annot"),
            NameObject("/Subtype"): NameObject("/Widget"),
            NameObject("/FT"): NameObject("/Tx"),
            NameObject("/T"): TextStringObject("full_name"),
            NameObject("/Rect"): ArrayObject(
                [FloatObject(100), FloatObject(700), FloatObject(300), FloatObject(720)]
            ),
        }
    )
    field_ref = writer._add_object(field)
    page[NameObject("/Annots")] = ArrayObject([field_ref])
    writer._root_object[NameObject("/AcroForm")] = DictionaryObject(
        {NameObject("/Fields"): ArrayObject([field_ref])}
    )
    return _to_bytes(writer)


def attachment_pdf_bytes() -> bytes:
    writer = PdfWriter()
    writer.add_blank_page(width=612, height=792)
    writer.add_attachment("notes.txt", b"internal notes")
    return _to_bytes(writer)


def javascript_pdf_bytes() -> bytes:
    writer = PdfWriter()
    writer.add_blank_page(width=612, height=792)
    writer.add_js("app.alert('hello');")
    return _to_bytes(writer)


def link_pdf_bytes() -> bytes:
    from pypdf.annotations import Link

    writer = PdfWriter()
    writer.add_blank_page(width=612, height=792)
    writer.add_annotation(
        page_number=0,
        annotation=Link(rect=(50, 550, 200, 650), url="https://example.com/terms"),
    )
    return _to_bytes(writer)


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_structlog():
    """Undo ``configure_logging`` between tests."""
    yield
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()


@pytest.fixture
def workspace(tmp_path: Path) -> Workspace:
    return Workspace(tmp_path / "work")


@pytest.fixture
def thresholds() -> ComplianceThresholds:
    return ComplianceThresholds()


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    return Settings(
        temp_dir=str(tmp_path / "settings-work"),
        cloud_a_url="",
        cloud_a_api_key="",
        cloud_b_url="",
        cloud_b_api_key="",
        cloud_backoff_seconds=0.0,
    )


@pytest.fixture
def fake_runner():
    """Factory for ``FakeRunner`` instances."""
    return FakeRunner


@pytest.fixture
def make_orchestrator(workspace: Workspace, thresholds: ComplianceThresholds):
    """Build a ValidationOrchestrator around a fake runner."""

    def _make(
        runner,
        policy: DefectPolicy | None = None,
        limits: ComplianceThresholds | None = None,
    ) -> ValidationOrchestrator:
        text = TextExtractor(runner)
        limits = limits or thresholds
        return ValidationOrchestrator(
            thresholds=limits,
            policy=policy or DefectPolicy(),
            workspace=workspace,
            file_type=FileTypeInspector(),
            structure=StructuralInspector(),
            text_extractor=text,
            ocr_detector=OCRHeuristicDetector(
                text, metadata_keywords=Settings().ocr_metadata_keywords
            ),
            image_analyzer=ImageComplianceAnalyzer(runner, limits),
        )

    return _make


@pytest.fixture
def make_verifier(workspace: Workspace, thresholds: ComplianceThresholds):
    def _make(runner) -> ComplianceVerifier:
        return ComplianceVerifier(
            ImageComplianceAnalyzer(runner, thresholds), thresholds, workspace
        )

    return _make


@pytest.fixture
def sample_pdf(tmp_path: Path) -> Path:
    """Create a minimal valid PDF file with extractable text."""
    pdf_path = tmp_path / "sample.pdf"
    pdf_path.write_bytes(MINIMAL_PDF_BYTES)
    return pdf_path


@pytest.fixture
def blank_pdf() -> bytes:
    return blank_pdf_bytes()


@pytest.fixture
def encrypted_pdf() -> bytes:
    return encrypted_pdf_bytes()


@pytest.fixture
def form_pdf() -> bytes:
    return form_pdf_bytes()


@pytest.fixture
def attachment_pdf() -> bytes:
    return attachment_pdf_bytes()


@pytest.fixture
def javascript_pdf() -> bytes:
    return javascript_pdf_bytes()


@pytest.fixture
def link_pdf() -> bytes:
    return link_pdf_bytes()


@pytest.fixture
def native_text() -> str:
    return NATIVE_TEXT


@pytest.fixture
def pdfimages_transcripts() -> dict[str, str]:
    return {
        "compliant": PDFIMAGES_COMPLIANT,
        "cmyk_150": PDFIMAGES_CMYK_150,
        "mixed": PDFIMAGES_MIXED,
        "empty": PDFIMAGES_EMPTY,
    }


@pytest.fixture
def gs_output():
    """Extract the output path from a Ghostscript argument list."""
    return output_path


@pytest.fixture
def make_blank_pdf():
    return blank_pdf_bytes
