"""Stage 2: Conversion strategies.

Every remediation avenue is a ``ConversionStrategy`` with one capability,
``attempt(buffer) -> ConversionOutcome``. ``attempt`` owns the working
artifacts of its stage: the input copy and the output file are created
right before the conversion runs and are deleted on every exit path.

Strategy variants:
    primary           Ghostscript, 8-bit gray, every image class at 300 DPI,
                      JPEG pass-through disabled.
    extreme           primary plus explicit DCT / CCITT codecs at quality 85.
    cloud-service-A/B remote conversion services over HTTPS.
    page-rebuild      split into single pages, rasterise each to 8-bit gray
                      at 300 DPI, merge back together.
    minimal-gray      gray color model only, gray images at 300 DPI.
    structural-clean  ``mutool clean`` rewrites the object graph, then a
                      minimal gray pass.
    conservative      the /ebook preset pinned back up to 300 DPI.
    bare-minimum      color-space forcing only.
    size-gate         one extra pass, color/gray at 150 DPI, mono at 300.

``build_default_plan`` assembles them in cascade order.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

import structlog
from pydantic import BaseModel, ConfigDict, Field
from pypdf import PdfReader, PdfWriter

from pdfconform.cloud.conversion_client import CloudConversionClient
from pdfconform.config import ComplianceThresholds
from pdfconform.errors import CloudConnectivityError, ConversionError, PipelineError
from pdfconform.tools.capabilities import MUTOOL
from pdfconform.tools.ghostscript import (
    GhostscriptConverter,
    GhostscriptParams,
    bare_minimum_params,
    conservative_params,
    extreme_params,
    minimal_gray_params,
    page_raster_params,
    primary_params,
    size_gate_params,
)
from pdfconform.tools.runner import ToolRunner
from pdfconform.tools.workspace import Workspace

log = structlog.get_logger(__name__)


class ConversionOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    strategy_name: str
    succeeded: bool
    buffer: bytes = Field(default=b"", repr=False)
    error_message: str | None = None
    connectivity_failure: bool = False

    @property
    def size_bytes(self) -> int:
        return len(self.buffer)


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------


class ConversionStrategy(ABC):
    """One remediation avenue: consume an artifact, produce a new one."""

    name: str = "conversion"
    description: str = "conversion"

    def __init__(self, workspace: Workspace) -> None:
        self._workspace = workspace

    @abstractmethod
    def convert(self, source: Path, destination: Path) -> None:
        """Write a converted PDF for *source* at *destination* or raise."""

    def attempt(self, buffer: bytes) -> ConversionOutcome:
        """Run :meth:`convert` on *buffer* and capture the outcome.

        Every failure, including a library error inside :meth:`convert`,
        becomes a failed outcome and never escapes this method.
        """
        log.info("strategy_started", strategy=self.name, size_bytes=len(buffer))
        with self._workspace.scoped_artifact(f"{self.name}_in", data=buffer) as source:
            with self._workspace.scoped_artifact(f"{self.name}_out") as destination:
                try:
                    self.convert(source, destination)
                    if not destination.exists() or destination.stat().st_size == 0:
                        raise ConversionError("conversion produced an empty file")
                    result = destination.read_bytes()
                except CloudConnectivityError as exc:
                    log.warning("strategy_unreachable", strategy=self.name, error=str(exc))
                    return ConversionOutcome(
                        strategy_name=self.name,
                        succeeded=False,
                        error_message=str(exc),
                        connectivity_failure=True,
                    )
                except (PipelineError, OSError) as exc:
                    log.warning("strategy_failed", strategy=self.name, error=str(exc))
                    return ConversionOutcome(
                        strategy_name=self.name,
                        succeeded=False,
                        error_message=str(exc),
                    )
                except Exception as exc:
                    log.exception("strategy_failed", strategy=self.name, error=str(exc))
                    return ConversionOutcome(
                        strategy_name=self.name,
                        succeeded=False,
                        error_message=f"unexpected error: {exc}",
                    )

        log.info("strategy_succeeded", strategy=self.name, size_bytes=len(result))
        return ConversionOutcome(strategy_name=self.name, succeeded=True, buffer=result)


# ---------------------------------------------------------------------------
# Variants
# ---------------------------------------------------------------------------


class GhostscriptStrategy(ConversionStrategy):
    def __init__(
        self,
        name: str,
        description: str,
        params: GhostscriptParams,
        converter: GhostscriptConverter,
        workspace: Workspace,
    ) -> None:
        super().__init__(workspace)
        self.name = name
        self.description = description
        self.params = params
        self._converter = converter

    def convert(self, source: Path, destination: Path) -> None:
        self._converter.convert(source, destination, self.params)


class CloudStrategy(ConversionStrategy):
    def __init__(
        self,
        client: CloudConversionClient,
        workspace: Workspace,
        dpi: int = 300,
        color_space: str = "gray",
        quality: int = 85,
    ) -> None:
        super().__init__(workspace)
        self.name = client.name
        self.description = f"Cloud conversion via {client.name}"
        self._client = client
        self._dpi = dpi
        self._color_space = color_space
        self._quality = quality

    @property
    def configured(self) -> bool:
        return self._client.configured

    def convert(self, source: Path, destination: Path) -> None:
        converted = self._client.convert(
            source.read_bytes(),
            filename=source.name,
            dpi=self._dpi,
            color_space=self._color_space,
            quality=self._quality,
        )
        destination.write_bytes(converted)


class PageRebuildStrategy(ConversionStrategy):
    """Rasterise page by page and merge the results."""

    name = "page-rebuild"
    description = "Page-by-page rebuild (8-bit gray raster)"

    def __init__(
        self,
        converter: GhostscriptConverter,
        workspace: Workspace,
        dpi: int = 300,
    ) -> None:
        super().__init__(workspace)
        self._converter = converter
        self._params = page_raster_params(dpi)

    def convert(self, source: Path, destination: Path) -> None:
        with self._workspace.scoped_directory("pages") as pages_dir:
            try:
                reader = PdfReader(str(source))
                page_count = len(reader.pages)
            except Exception as exc:
                raise ConversionError(f"could not split PDF into pages: {exc}") from exc
            if page_count == 0:
                raise ConversionError("PDF has no pages to rebuild")

            rebuilt: list[Path] = []
            for number, page in enumerate(reader.pages, start=1):
                single = pages_dir / f"page_{number:04d}.pdf"
                try:
                    writer = PdfWriter()
                    writer.add_page(page)
                    with open(single, "wb") as fh:
                        writer.write(fh)
                except Exception as exc:
                    raise ConversionError(f"could not extract page {number}: {exc}") from exc

                converted = pages_dir / f"page_{number:04d}_gray.pdf"
                self._converter.convert(single, converted, self._params)
                rebuilt.append(converted)

            merged = PdfWriter()
            try:
                for part in rebuilt:
                    merged.append(str(part))
                with open(destination, "wb") as fh:
                    merged.write(fh)
            except Exception as exc:
                raise ConversionError(f"could not merge rebuilt pages: {exc}") from exc

        log.debug("pages_rebuilt", pages=page_count)


class StructuralCleanStrategy(ConversionStrategy):
    """Rewrite the object graph with mutool, then a minimal gray pass."""

    name = "structural-clean"
    description = "Structural clean (mutool) followed by gray conversion"

    def __init__(
        self,
        runner: ToolRunner,
        converter: GhostscriptConverter,
        workspace: Workspace,
        dpi: int = 300,
    ) -> None:
        super().__init__(workspace)
        self._runner = runner
        self._converter = converter
        self._params = minimal_gray_params(dpi)

    def convert(self, source: Path, destination: Path) -> None:
        with self._workspace.scoped_artifact("cleaned") as cleaned:
            # -gggg: garbage-collect and merge duplicate objects; -z: deflate.
            self._runner.run(MUTOOL, ["clean", "-gggg", "-z", str(source), str(cleaned)])
            if not cleaned.exists() or cleaned.stat().st_size == 0:
                raise ConversionError("mutool clean produced an empty file")
            self._converter.convert(cleaned, destination, self._params)


# ---------------------------------------------------------------------------
# Plan
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RemediationPlan:
    """Strategies grouped by cascade phase, each group in priority order."""

    raster: tuple[ConversionStrategy, ...]
    cloud: tuple[CloudStrategy, ...]
    local: tuple[ConversionStrategy, ...]
    size_gate: ConversionStrategy


def build_default_plan(
    runner: ToolRunner,
    workspace: Workspace,
    thresholds: ComplianceThresholds,
    cloud_clients: list[CloudConversionClient] | None = None,
    jpeg_quality: int = 85,
    size_gate_color_dpi: int = 150,
    size_gate_mono_dpi: int = 300,
) -> RemediationPlan:
    converter = GhostscriptConverter(runner)
    dpi = thresholds.required_dpi
    bits = thresholds.required_bits_per_component

    def gs(name: str, description: str, params: GhostscriptParams) -> GhostscriptStrategy:
        return GhostscriptStrategy(name, description, params, converter, workspace)

    raster = (
        gs("primary", f"Primary conversion (gray {bits}-bit, {dpi} DPI)", primary_params(dpi, bits)),
        gs(
            "extreme",
            f"Extreme conversion (DCT/CCITT, quality {jpeg_quality})",
            extreme_params(dpi, bits, jpeg_quality),
        ),
    )
    cloud = tuple(
        CloudStrategy(
            client,
            workspace,
            dpi=dpi,
            color_space=thresholds.required_color_space,
            quality=jpeg_quality,
        )
        for client in (cloud_clients or [])
    )
    local = (
        PageRebuildStrategy(converter, workspace, dpi),
        gs("minimal-gray", "Minimal gray conversion", minimal_gray_params(dpi)),
        StructuralCleanStrategy(runner, converter, workspace, dpi),
        gs("conservative", "Conservative conversion (ebook preset)", conservative_params(dpi)),
        gs("bare-minimum", "Bare-minimum gray conversion", bare_minimum_params()),
    )
    size_gate = gs(
        "size-gate",
        f"Size reduction (color/gray {size_gate_color_dpi} DPI, mono {size_gate_mono_dpi} DPI)",
        size_gate_params(size_gate_color_dpi, size_gate_mono_dpi),
    )
    return RemediationPlan(raster=raster, cloud=cloud, local=local, size_gate=size_gate)
