"""Stage 0b: OCR / scanned-content heuristic.

Flags documents whose text layer looks like the output of an OCR engine
run over a scan. This is a statistical heuristic with tunable thresholds,
NOT a certified classifier: it counts well-known OCR artifacts in a leading
sample of the extracted text and checks the producer metadata for scanner
and OCR software names.

Scoring:
    - No extracted text at all            -> has_ocr=True, confidence=90
    - error_ratio = matches / sample_len * 100
      error_ratio > threshold (2.0)       -> has_ocr=True,
                                             confidence=min(90, ratio * 20)
    - Scan keyword in metadata            -> has_ocr=True,
                                             confidence >= 80
"""

from __future__ import annotations

import re
from pathlib import Path

import structlog

from pdfconform.models import OCRDetection, StructureInfo
from pdfconform.stages.stage_0a_inspection import TextExtractor

log = structlog.get_logger(__name__)

EMPTY_TEXT_CONFIDENCE: float = 90.0
MAX_CONFIDENCE: float = 90.0
METADATA_CONFIDENCE: float = 80.0
RATIO_TO_CONFIDENCE: float = 20.0

# Single-letter words that are legitimate in English and Spanish text.
DEFAULT_SINGLE_LETTER_WORDS = "aeiouy"


def build_artifact_patterns(
    single_letter_words: str = DEFAULT_SINGLE_LETTER_WORDS,
) -> dict[str, re.Pattern[str]]:
    """Compile the OCR artifact patterns.

    Letters in *single_letter_words* (either case) are real words and are
    not counted as isolated letters. Pass ``""`` to count every one.
    """
    letters = "".join(sorted({c for c in single_letter_words.lower() if c.isalpha()}))
    if letters:
        exclusion = rf"(?![{letters}{letters.upper()}](?!\S))"
    else:
        exclusion = ""
    return {
        # Runs of glyphs OCR engines confuse with one another.
        "confusable_glyph_runs": re.compile(r"[Il1|]{4,}"),
        "zero_o_runs": re.compile(r"[0O]{4,}"),
        "isolated_letters": re.compile(rf"(?<!\S){exclusion}[A-Za-z](?!\S)"),
        # Leader dots, rules and underscores are common in forms; skip them.
        "punctuation_clusters": re.compile(r"[^\w\s.\-_=*]{3,}"),
        "single_char_triplets": re.compile(r"(?<!\S)\S\s+\S\s+\S(?!\S)"),
    }


OCR_ARTIFACT_PATTERNS = build_artifact_patterns()

_METADATA_FIELDS = ("Producer", "Creator", "Title", "Subject", "Keywords")


class OCRHeuristicDetector:
    def __init__(
        self,
        text_extractor: TextExtractor,
        sample_chars: int = 2000,
        error_ratio_threshold: float = 2.0,
        metadata_keywords: list[str] | None = None,
        single_letter_words: str = DEFAULT_SINGLE_LETTER_WORDS,
    ) -> None:
        self._text_extractor = text_extractor
        self._sample_chars = sample_chars
        self._threshold = error_ratio_threshold
        self._keywords = [k.lower() for k in (metadata_keywords or [])]
        if single_letter_words == DEFAULT_SINGLE_LETTER_WORDS:
            self._patterns = OCR_ARTIFACT_PATTERNS
        else:
            self._patterns = build_artifact_patterns(single_letter_words)

    def detect(self, path: Path, structure: StructureInfo | None = None) -> OCRDetection:
        """Classify the document at *path*.

        Raises ``ToolUnavailableError`` when no text could be extracted at
        all (as opposed to extracting an empty string).
        """
        text = self._text_extractor.extract(path)
        metadata = structure.metadata if structure is not None else {}
        return self.classify_text(text, metadata)

    def classify_text(self, text: str, metadata: dict[str, str] | None = None) -> OCRDetection:
        metadata_hits = self._metadata_hits(metadata or {})
        stripped = text.strip()

        if not stripped:
            log.info("ocr_empty_text")
            return OCRDetection(
                has_ocr=True,
                confidence=EMPTY_TEXT_CONFIDENCE,
                details={
                    "reason": "no extractable text",
                    "text_length": 0,
                    "metadata_hits": metadata_hits,
                },
            )

        sample = stripped[: self._sample_chars]
        matches = {
            name: len(pattern.findall(sample))
            for name, pattern in self._patterns.items()
        }
        total = sum(matches.values())
        error_ratio = total / len(sample) * 100

        has_ocr = error_ratio > self._threshold
        confidence = min(MAX_CONFIDENCE, error_ratio * RATIO_TO_CONFIDENCE)

        if metadata_hits:
            has_ocr = True
            confidence = max(confidence, METADATA_CONFIDENCE)

        details = {
            "reason": _reason(has_ocr, error_ratio > self._threshold, bool(metadata_hits)),
            "text_length": len(stripped),
            "sample_length": len(sample),
            "pattern_matches": matches,
            "total_matches": total,
            "error_ratio": round(error_ratio, 3),
            "threshold": self._threshold,
            "metadata_hits": metadata_hits,
        }
        log.debug(
            "ocr_heuristic_scored",
            has_ocr=has_ocr,
            confidence=round(confidence, 1),
            error_ratio=round(error_ratio, 3),
        )
        return OCRDetection(has_ocr=has_ocr, confidence=round(confidence, 1), details=details)

    def _metadata_hits(self, metadata: dict[str, str]) -> list[str]:
        hits: list[str] = []
        for field in _METADATA_FIELDS:
            value = metadata.get(field, "").lower()
            if not value:
                continue
            for keyword in self._keywords:
                if re.search(rf"\b{re.escape(keyword)}", value) and keyword not in hits:
                    hits.append(keyword)
        return hits


def _reason(has_ocr: bool, ratio_exceeded: bool, metadata_match: bool) -> str:
    if not has_ocr:
        return "text layer looks native"
    if ratio_exceeded and metadata_match:
        return "OCR artifacts in text and scan software in metadata"
    if metadata_match:
        return "scan software named in document metadata"
    return "OCR artifacts above threshold"
