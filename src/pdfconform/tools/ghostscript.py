"""Declarative Ghostscript parameter sets and the converter that runs them.

Each remediation preset is a frozen ``GhostscriptParams`` value. The
converter renders it to an argument vector and treats Ghostscript as a
black box: a non-empty PDF appears at the output path, or the call fails.
"""

from __future__ import annotations

from pathlib import Path

import structlog
from pydantic import BaseModel, ConfigDict

from pdfconform.errors import ConversionError
from pdfconform.tools.capabilities import GHOSTSCRIPT
from pdfconform.tools.runner import ToolRunner

log = structlog.get_logger(__name__)


class GhostscriptParams(BaseModel):
    model_config = ConfigDict(frozen=True)

    device: str = "pdfwrite"
    pdf_settings: str | None = None
    compatibility_level: str | None = "1.4"

    # Color model
    color_conversion_strategy: str | None = "Gray"
    process_color_model: str | None = "/DeviceGray"
    override_icc: bool = False
    image_depth: int | None = None

    # Resolution per content class
    color_resolution: int | None = None
    gray_resolution: int | None = None
    mono_resolution: int | None = None
    downsample: bool = False
    downsample_type: str = "/Bicubic"
    downsample_threshold: float | None = None
    raster_resolution: int | None = None

    # Codecs
    pass_through_jpeg: bool | None = None
    color_filter: str | None = None
    gray_filter: str | None = None
    mono_filter: str | None = None
    jpeg_quality: int | None = None
    detect_duplicate_images: bool | None = None

    # Fonts and pages
    embed_fonts: bool | None = None
    subset_fonts: bool | None = None
    compress_fonts: bool | None = None
    auto_rotate_pages: str | None = None

    def to_args(self, source: Path, destination: Path) -> list[str]:
        args = [
            f"-sDEVICE={self.device}",
            "-dNOPAUSE",
            "-dBATCH",
            "-dSAFER",
            "-dQUIET",
        ]
        if self.pdf_settings:
            args.append(f"-dPDFSETTINGS={self.pdf_settings}")
        if self.compatibility_level:
            args.append(f"-dCompatibilityLevel={self.compatibility_level}")
        if self.raster_resolution:
            args.append(f"-r{self.raster_resolution}")

        if self.color_conversion_strategy:
            args.append(f"-sColorConversionStrategy={self.color_conversion_strategy}")
        if self.process_color_model:
            args.append(f"-dProcessColorModel={self.process_color_model}")
        if self.override_icc:
            args.append("-dOverrideICC=true")
        if self.image_depth:
            args.append(f"-dColorImageDepth={self.image_depth}")
            args.append(f"-dGrayImageDepth={self.image_depth}")

        for image_class, resolution in (
            ("Color", self.color_resolution),
            ("Gray", self.gray_resolution),
            ("Mono", self.mono_resolution),
        ):
            if resolution is None:
                continue
            args.append(f"-d{image_class}ImageResolution={resolution}")
            if self.downsample:
                args.append(f"-dDownsample{image_class}Images=true")
                args.append(f"-d{image_class}ImageDownsampleType={self.downsample_type}")
                if self.downsample_threshold is not None:
                    args.append(
                        f"-d{image_class}ImageDownsampleThreshold={self.downsample_threshold}"
                    )

        if self.pass_through_jpeg is not None:
            flag = _bool(self.pass_through_jpeg)
            args.append(f"-dPassThroughJPEGImages={flag}")
            args.append(f"-dPassThroughJPXImages={flag}")
        for image_class, image_filter in (
            ("Color", self.color_filter),
            ("Gray", self.gray_filter),
            ("Mono", self.mono_filter),
        ):
            if image_filter is None:
                continue
            if image_class != "Mono":
                args.append(f"-dAutoFilter{image_class}Images=false")
            args.append(f"-dEncode{image_class}Images=true")
            args.append(f"-d{image_class}ImageFilter={image_filter}")
        if self.jpeg_quality is not None:
            args.append(f"-dJPEGQ={self.jpeg_quality}")
        if self.detect_duplicate_images is not None:
            args.append(f"-dDetectDuplicateImages={_bool(self.detect_duplicate_images)}")

        if self.embed_fonts is not None:
            args.append(f"-dEmbedAllFonts={_bool(self.embed_fonts)}")
        if self.subset_fonts is not None:
            args.append(f"-dSubsetFonts={_bool(self.subset_fonts)}")
        if self.compress_fonts is not None:
            args.append(f"-dCompressFonts={_bool(self.compress_fonts)}")
        if self.auto_rotate_pages:
            args.append(f"-dAutoRotatePages={self.auto_rotate_pages}")

        args.append(f"-sOutputFile={destination}")
        args.append(str(source))
        return args


def _bool(value: bool) -> str:
    return "true" if value else "false"


# ---------------------------------------------------------------------------
# Presets
# ---------------------------------------------------------------------------


def primary_params(dpi: int = 300, bits: int = 8) -> GhostscriptParams:
    """Full re-encode to 8-bit gray with every image class targeted at *dpi*.

    Ghostscript only downsamples: an image already below *dpi* keeps its
    resolution, so a 150 DPI image still fails verification after this pass.
    Only ``page_raster_params`` (the page-by-page rebuild) raises it.
    """
    return GhostscriptParams(
        pdf_settings="/prepress",
        override_icc=True,
        image_depth=bits,
        color_resolution=dpi,
        gray_resolution=dpi,
        mono_resolution=dpi,
        downsample=True,
        downsample_threshold=1.0,
        pass_through_jpeg=False,
        embed_fonts=True,
        subset_fonts=True,
        compress_fonts=True,
        auto_rotate_pages="/None",
    )


def extreme_params(dpi: int = 300, bits: int = 8, quality: int = 85) -> GhostscriptParams:
    """Primary settings plus explicit DCT / CCITT codecs at a fixed quality.

    Like the primary preset it cannot upsample images below *dpi*.
    """
    return primary_params(dpi, bits).model_copy(
        update={
            "color_filter": "/DCTEncode",
            "gray_filter": "/DCTEncode",
            "mono_filter": "/CCITTFaxEncode",
            "jpeg_quality": quality,
        }
    )


def minimal_gray_params(dpi: int = 300) -> GhostscriptParams:
    return GhostscriptParams(
        pdf_settings="/prepress",
        gray_resolution=dpi,
        downsample=True,
        compress_fonts=True,
        auto_rotate_pages="/None",
    )


def conservative_params(dpi: int = 300) -> GhostscriptParams:
    """The /ebook preset with resolution pinned back up to *dpi*."""
    return GhostscriptParams(
        pdf_settings="/ebook",
        color_resolution=dpi,
        gray_resolution=dpi,
        mono_resolution=dpi,
        detect_duplicate_images=True,
        embed_fonts=True,
        subset_fonts=True,
    )


def bare_minimum_params() -> GhostscriptParams:
    return GhostscriptParams(compatibility_level=None)


def size_gate_params(color_dpi: int = 150, mono_dpi: int = 300) -> GhostscriptParams:
    """Lower the color/gray target only; monochrome content keeps *mono_dpi*."""
    return GhostscriptParams(
        color_resolution=color_dpi,
        gray_resolution=color_dpi,
        mono_resolution=mono_dpi,
        downsample=True,
        downsample_threshold=1.0,
        pass_through_jpeg=False,
        detect_duplicate_images=True,
        embed_fonts=True,
        subset_fonts=True,
        compress_fonts=True,
        auto_rotate_pages="/None",
    )


def page_raster_params(dpi: int = 300) -> GhostscriptParams:
    """Rasterise each page to a single 8-bit gray image at *dpi*.

    The only preset that lifts low-resolution images up to *dpi*, since the
    whole page is rendered afresh.
    """
    return GhostscriptParams(
        device="pdfimage8",
        compatibility_level=None,
        color_conversion_strategy=None,
        process_color_model=None,
        raster_resolution=dpi,
    )


# ---------------------------------------------------------------------------
# Converter
# ---------------------------------------------------------------------------


class GhostscriptConverter:
    def __init__(self, runner: ToolRunner) -> None:
        self._runner = runner

    @property
    def available(self) -> bool:
        return self._runner.available(GHOSTSCRIPT)

    def convert(self, source: Path, destination: Path, params: GhostscriptParams) -> Path:
        """Run Ghostscript; raise unless a non-empty file lands at *destination*."""
        self._runner.run(GHOSTSCRIPT, params.to_args(source, destination))

        if not destination.exists() or destination.stat().st_size == 0:
            raise ConversionError("Ghostscript produced an empty file")

        log.debug(
            "ghostscript_converted",
            device=params.device,
            size_bytes=destination.stat().st_size,
        )
        return destination
