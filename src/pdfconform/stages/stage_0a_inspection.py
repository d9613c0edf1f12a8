"""Stage 0a: Document inspection leaves.

Four independent inspectors feed the validation orchestrator and the
remediation verifier:

    - FileTypeInspector:        sniffs the real content type with libmagic.
    - StructuralInspector:      walks the trailer / object graph with pypdf
                                (encryption, forms, attachments, scripts).
    - TextExtractor:            plain text via pdftotext, pypdf as fallback.
    - ImageComplianceAnalyzer:  per-image color space, depth and DPI from
                                ``pdfimages -list``.

Inspectors raise ``ToolUnavailableError`` / ``ToolExecutionError`` when they
cannot do their job; deciding what that means for a report is left to the
caller.
"""

from __future__ import annotations

from pathlib import Path

import magic
import structlog
from pypdf import PdfReader
from pypdf.generic import ArrayObject, DictionaryObject

from pdfconform.config import ComplianceThresholds
from pdfconform.errors import ToolExecutionError, ToolUnavailableError
from pdfconform.models import ImageAnalysis, ImageDescriptor, StructureInfo
from pdfconform.tools.capabilities import PDFIMAGES, PDFTOTEXT
from pdfconform.tools.pdfimages import parse_image_list
from pdfconform.tools.runner import ToolRunner

log = structlog.get_logger(__name__)

PDF_MIME = "application/pdf"

# The PDF header may be preceded by junk bytes; readers accept it within
# the first kilobyte.
_PDF_SIGNATURE = b"%PDF-"
_SIGNATURE_WINDOW = 1024


# ---------------------------------------------------------------------------
# File type
# ---------------------------------------------------------------------------


class FileTypeInspector:
    """Detect the MIME type from content, never from the filename."""

    def detect(self, buffer: bytes) -> str:
        """Return the libmagic MIME type for *buffer*.

        Raises ``ToolUnavailableError`` when libmagic cannot be used.
        """
        try:
            return magic.from_buffer(buffer, mime=True)
        except magic.MagicException as exc:
            raise ToolUnavailableError(f"libmagic failed: {exc}") from exc

    @staticmethod
    def has_pdf_signature(buffer: bytes) -> bool:
        return _PDF_SIGNATURE in buffer[:_SIGNATURE_WINDOW]


# ---------------------------------------------------------------------------
# Structure
# ---------------------------------------------------------------------------


def _resolve(obj):
    """Follow an indirect reference, tolerating ``None``."""
    if obj is None:
        return None
    return obj.get_object() if hasattr(obj, "get_object") else obj


def _is_javascript_action(action) -> bool:
    action = _resolve(action)
    if not isinstance(action, DictionaryObject):
        return False
    if action.get("/S") == "/JavaScript" or "/JS" in action:
        return True
    # Chained actions.
    return any(_is_javascript_action(nxt) for nxt in _as_list(action.get("/Next")))


def _as_list(obj) -> list:
    obj = _resolve(obj)
    if obj is None:
        return []
    if isinstance(obj, ArrayObject):
        return [_resolve(item) for item in obj]
    return [obj]


def _has_additional_js(container: DictionaryObject) -> bool:
    aa = _resolve(container.get("/AA"))
    if not isinstance(aa, DictionaryObject):
        return False
    return any(_is_javascript_action(aa.get(key)) for key in aa)


class StructuralInspector:
    """Inspect the trailer and object graph for policy-relevant features."""

    def inspect(self, path: Path) -> StructureInfo:
        try:
            reader = PdfReader(str(path))
            if reader.is_encrypted:
                # Encryption is reported regardless of whether an empty user
                # password opens the file.
                if not reader.decrypt(""):
                    log.info("encrypted_pdf_unreadable", path=str(path))
                    return StructureInfo(encrypted=True, pdf_version=reader.pdf_header)
                return self._walk(reader, encrypted=True)
            return self._walk(reader, encrypted=False)
        except (ToolExecutionError, ToolUnavailableError):
            raise
        except Exception as exc:
            log.warning("structure_parse_failed", path=str(path), error=str(exc))
            raise ToolExecutionError(f"PDF structure could not be parsed: {exc}") from exc

    def _walk(self, reader: PdfReader, encrypted: bool) -> StructureInfo:
        root = _resolve(reader.trailer.get("/Root"))
        if not isinstance(root, DictionaryObject):
            raise ToolExecutionError("PDF trailer has no document catalog")

        names = _resolve(root.get("/Names"))
        names = names if isinstance(names, DictionaryObject) else DictionaryObject()

        has_forms = self._has_forms(root)
        has_embedded = "/EmbeddedFiles" in names
        has_js = (
            "/JavaScript" in names
            or _is_javascript_action(root.get("/OpenAction"))
            or _has_additional_js(root)
        )
        has_links = False

        for page in reader.pages:
            if _has_additional_js(page):
                has_js = True
            for annot in _as_list(page.get("/Annots")):
                if not isinstance(annot, DictionaryObject):
                    continue
                subtype = annot.get("/Subtype")
                if subtype == "/FileAttachment":
                    has_embedded = True
                if subtype == "/Widget" and "/FT" in annot:
                    has_forms = True
                action = _resolve(annot.get("/A"))
                if _is_javascript_action(action) or _has_additional_js(annot):
                    has_js = True
                if isinstance(action, DictionaryObject) and action.get("/S") == "/URI":
                    has_links = True

        metadata = {
            str(key).lstrip("/"): str(_resolve(value))
            for key, value in (reader.metadata or {}).items()
        }

        return StructureInfo(
            page_count=len(reader.pages),
            encrypted=encrypted,
            has_forms=has_forms,
            has_embedded_files=has_embedded,
            has_javascript=has_js,
            has_external_links=has_links,
            pdf_version=reader.pdf_header,
            metadata=metadata,
        )

    @staticmethod
    def _has_forms(root: DictionaryObject) -> bool:
        acroform = _resolve(root.get("/AcroForm"))
        if not isinstance(acroform, DictionaryObject):
            return False
        if "/XFA" in acroform:
            return True
        return len(_as_list(acroform.get("/Fields"))) > 0


# ---------------------------------------------------------------------------
# Text
# ---------------------------------------------------------------------------


class TextExtractor:
    """Return the page-ordered plain text of a PDF as one string."""

    def __init__(self, runner: ToolRunner) -> None:
        self._runner = runner

    def extract(self, path: Path) -> str:
        if self._runner.available(PDFTOTEXT):
            try:
                result = self._runner.run(PDFTOTEXT, ["-enc", "UTF-8", str(path), "-"])
                return result.stdout
            except (ToolUnavailableError, ToolExecutionError) as exc:
                log.info("pdftotext_failed_falling_back", path=str(path), error=str(exc))

        return self._extract_with_pypdf(path)

    @staticmethod
    def _extract_with_pypdf(path: Path) -> str:
        try:
            reader = PdfReader(str(path))
            if reader.is_encrypted and not reader.decrypt(""):
                raise ToolUnavailableError("text of an encrypted PDF cannot be read")
            return "\n".join(page.extract_text() or "" for page in reader.pages)
        except ToolUnavailableError:
            raise
        except Exception as exc:
            raise ToolUnavailableError(f"text extraction failed: {exc}") from exc


# ---------------------------------------------------------------------------
# Images
# ---------------------------------------------------------------------------


class ImageComplianceAnalyzer:
    """Enumerate embedded images and check each against the thresholds.

    An image complies when its color space is gray at the required bit depth
    and both axes reach the required DPI. Each image contributes at most one
    resolution issue and one color issue.
    """

    def __init__(self, runner: ToolRunner, thresholds: ComplianceThresholds) -> None:
        self._runner = runner
        self._thresholds = thresholds

    def analyze(self, path: Path) -> ImageAnalysis:
        result = self._runner.run(PDFIMAGES, ["-list", str(path)])
        return self.evaluate(parse_image_list(result.stdout))

    def evaluate(self, images: list[ImageDescriptor]) -> ImageAnalysis:
        t = self._thresholds
        resolution_issues: list[str] = []
        color_issues: list[str] = []
        valid = 0

        for number, img in enumerate(images, start=1):
            ok = True
            if img.horizontal_dpi < t.required_dpi or img.vertical_dpi < t.required_dpi:
                ok = False
                resolution_issues.append(
                    f"Image {number} (page {img.page}): resolution "
                    f"{img.horizontal_dpi}x{img.vertical_dpi} DPI is below "
                    f"{t.required_dpi} DPI"
                )
            if (
                img.color_space != t.required_color_space
                or img.bits_per_component != t.required_bits_per_component
            ):
                ok = False
                color_issues.append(
                    f"Image {number} (page {img.page}): {img.color_space} "
                    f"{img.bits_per_component}-bit, expected {t.required_color_space} "
                    f"{t.required_bits_per_component}-bit"
                )
            if ok:
                valid += 1

        log.debug(
            "images_evaluated",
            total=len(images),
            valid=valid,
            resolution_issues=len(resolution_issues),
            color_issues=len(color_issues),
        )
        return ImageAnalysis(
            total_images=len(images),
            valid_images=valid,
            resolution_issues=tuple(resolution_issues),
            color_issues=tuple(color_issues),
            images=tuple(images),
        )
