"""E2E tests for Stage 0a: document inspection leaves.

Structural checks run pypdf against real PDFs generated in the fixtures;
the external command-line tools are replaced by a fake runner fed with
real ``pdfimages -list`` transcripts.
"""

from pathlib import Path
from unittest.mock import patch

import magic
import pytest

from pdfconform.config import ComplianceThresholds
from pdfconform.errors import ToolExecutionError, ToolUnavailableError
from pdfconform.models import ImageDescriptor
from pdfconform.stages.stage_0a_inspection import (
    PDF_MIME,
    FileTypeInspector,
    ImageComplianceAnalyzer,
    StructuralInspector,
    TextExtractor,
)


def _write(tmp_path: Path, data: bytes, name: str = "doc.pdf") -> Path:
    path = tmp_path / name
    path.write_bytes(data)
    return path


# ---------------------------------------------------------------------------
# FileTypeInspector
# ---------------------------------------------------------------------------


class TestFileTypeInspector:
    def test_pdf_detected_from_content(self, blank_pdf) -> None:
        assert FileTypeInspector().detect(blank_pdf) == PDF_MIME

    def test_text_renamed_to_pdf_is_not_pdf(self) -> None:
        mime = FileTypeInspector().detect(b"Just some plain text pretending to be a PDF.\n")
        assert mime != PDF_MIME

    def test_libmagic_failure_is_tool_unavailable(self) -> None:
        with patch(
            "pdfconform.stages.stage_0a_inspection.magic.from_buffer",
            side_effect=magic.MagicException("no magic database"),
        ):
            with pytest.raises(ToolUnavailableError):
                FileTypeInspector().detect(b"%PDF-1.4")

    def test_signature_check(self) -> None:
        assert FileTypeInspector.has_pdf_signature(b"%PDF-1.7\n...")
        assert FileTypeInspector.has_pdf_signature(b"\x00" * 100 + b"%PDF-1.4")
        assert not FileTypeInspector.has_pdf_signature(b"PK\x03\x04")


# ---------------------------------------------------------------------------
# StructuralInspector
# ---------------------------------------------------------------------------


class TestStructuralInspector:
    def test_plain_pdf_has_no_policy_features(self, tmp_path, blank_pdf) -> None:
        info = StructuralInspector().inspect(_write(tmp_path, blank_pdf))

        assert info.page_count == 1
        assert info.encrypted is False
        assert info.has_forms is False
        assert info.has_embedded_files is False
        assert info.has_javascript is False
        assert info.has_external_links is False
        assert info.pdf_version.startswith("%PDF-")

    def test_page_count(self, tmp_path, make_blank_pdf) -> None:
        info = StructuralInspector().inspect(_write(tmp_path, make_blank_pdf(pages=3)))
        assert info.page_count == 3

    def test_encrypted_pdf(self, tmp_path, encrypted_pdf) -> None:
        info = StructuralInspector().inspect(_write(tmp_path, encrypted_pdf))
        assert info.encrypted is True
        # The user password is unknown, so the page tree is not readable.
        assert info.page_count is None

    def test_form_fields(self, tmp_path, form_pdf) -> None:
        info = StructuralInspector().inspect(_write(tmp_path, form_pdf))
        assert info.has_forms is True

    def test_embedded_files(self, tmp_path, attachment_pdf) -> None:
        info = StructuralInspector().inspect(_write(tmp_path, attachment_pdf))
        assert info.has_embedded_files is True

    def test_javascript(self, tmp_path, javascript_pdf) -> None:
        info = StructuralInspector().inspect(_write(tmp_path, javascript_pdf))
        assert info.has_javascript is True

    def test_external_links(self, tmp_path, link_pdf) -> None:
        info = StructuralInspector().inspect(_write(tmp_path, link_pdf))
        assert info.has_external_links is True
        assert info.has_javascript is False

    def test_metadata_is_collected(self, tmp_path, make_blank_pdf) -> None:
        data = make_blank_pdf(metadata={"/Producer": "ScanSnap Manager #S1300i"})
        info = StructuralInspector().inspect(_write(tmp_path, data))
        assert info.metadata["Producer"] == "ScanSnap Manager #S1300i"

    def test_garbage_raises_execution_error(self, tmp_path) -> None:
        path = _write(tmp_path, b"%PDF-1.4\nthis is not a real pdf body")
        with pytest.raises(ToolExecutionError):
            StructuralInspector().inspect(path)


# ---------------------------------------------------------------------------
# TextExtractor
# ---------------------------------------------------------------------------


class TestTextExtractor:
    def test_uses_pdftotext_when_available(self, tmp_path, fake_runner, sample_pdf) -> None:
        runner = fake_runner({"pdftotext": "Hello from pdftotext\n"})
        text = TextExtractor(runner).extract(sample_pdf)

        assert text == "Hello from pdftotext\n"
        args = runner.calls_for("pdftotext")[0]
        assert args == ["-enc", "UTF-8", str(sample_pdf), "-"]

    def test_falls_back_to_pypdf_when_missing(self, fake_runner, sample_pdf) -> None:
        runner = fake_runner(missing=["pdftotext"])
        text = TextExtractor(runner).extract(sample_pdf)
        assert "Test contract" in text

    def test_falls_back_to_pypdf_when_tool_fails(self, fake_runner, sample_pdf) -> None:
        runner = fake_runner({"pdftotext": ToolExecutionError("pdftotext exited with status 1")})
        text = TextExtractor(runner).extract(sample_pdf)
        assert "Test contract" in text

    def test_blank_pdf_yields_empty_text(self, tmp_path, fake_runner, blank_pdf) -> None:
        runner = fake_runner(missing=["pdftotext"])
        text = TextExtractor(runner).extract(_write(tmp_path, blank_pdf))
        assert text.strip() == ""

    def test_unreadable_encrypted_pdf_raises(self, tmp_path, fake_runner, encrypted_pdf) -> None:
        runner = fake_runner(missing=["pdftotext"])
        with pytest.raises(ToolUnavailableError):
            TextExtractor(runner).extract(_write(tmp_path, encrypted_pdf))


# ---------------------------------------------------------------------------
# ImageComplianceAnalyzer
# ---------------------------------------------------------------------------


def _image(color="gray", bpc=8, x=300, y=300, page=1) -> ImageDescriptor:
    return ImageDescriptor(
        page=page,
        index=0,
        color_space=color,
        bits_per_component=bpc,
        horizontal_dpi=x,
        vertical_dpi=y,
    )


class TestImageComplianceAnalyzer:
    @pytest.fixture
    def analyzer(self, fake_runner) -> ImageComplianceAnalyzer:
        return ImageComplianceAnalyzer(fake_runner(), ComplianceThresholds())

    def test_compliant_image(self, analyzer) -> None:
        result = analyzer.evaluate([_image()])
        assert result.total_images == 1
        assert result.valid_images == 1
        assert result.compliant

    def test_cmyk_150_yields_one_issue_of_each_kind(self, analyzer) -> None:
        result = analyzer.evaluate([_image(color="cmyk", x=150, y=150)])

        assert result.valid_images == 0
        assert result.resolution_issues == (
            "Image 1 (page 1): resolution 150x150 DPI is below 300 DPI",
        )
        assert result.color_issues == ("Image 1 (page 1): cmyk 8-bit, expected gray 8-bit",)

    def test_single_axis_below_threshold(self, analyzer) -> None:
        result = analyzer.evaluate([_image(x=300, y=299)])
        assert len(result.resolution_issues) == 1
        assert not result.color_issues

    def test_gray_at_wrong_depth(self, analyzer) -> None:
        result = analyzer.evaluate([_image(bpc=1)])
        assert result.color_issues == ("Image 1 (page 1): gray 1-bit, expected gray 8-bit",)

    def test_no_images_is_compliant(self, analyzer) -> None:
        result = analyzer.evaluate([])
        assert result.total_images == 0
        assert result.compliant

    def test_analyze_runs_pdfimages_list(
        self, fake_runner, pdfimages_transcripts, sample_pdf
    ) -> None:
        runner = fake_runner({"pdfimages": pdfimages_transcripts["mixed"]})
        result = ImageComplianceAnalyzer(runner, ComplianceThresholds()).analyze(sample_pdf)

        assert runner.calls_for("pdfimages") == [["-list", str(sample_pdf)]]
        assert result.total_images == 3
        assert result.valid_images == 2
        assert len(result.resolution_issues) == 1
        assert result.color_issues == ("Image 2 (page 2): rgb 8-bit, expected gray 8-bit",)

    def test_missing_tool_propagates(self, fake_runner, sample_pdf) -> None:
        runner = fake_runner(missing=["pdfimages"])
        with pytest.raises(ToolUnavailableError):
            ImageComplianceAnalyzer(runner, ComplianceThresholds()).analyze(sample_pdf)
