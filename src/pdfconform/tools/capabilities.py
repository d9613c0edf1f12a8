"""One-time detection of the external command-line tools.

Detection runs once when a pipeline is assembled. The resulting record is
immutable and shared by every pipeline run, so no run ever probes for a
binary again.
"""

from __future__ import annotations

import shutil

import structlog
from pydantic import BaseModel, ConfigDict, Field

from pdfconform.config import Settings

log = structlog.get_logger(__name__)

GHOSTSCRIPT = "ghostscript"
PDFIMAGES = "pdfimages"
PDFTOTEXT = "pdftotext"
MUTOOL = "mutool"

ALL_TOOLS: tuple[str, ...] = (GHOSTSCRIPT, PDFIMAGES, PDFTOTEXT, MUTOOL)


class ToolCapabilities(BaseModel):
    """Resolved executable paths keyed by logical tool name."""

    model_config = ConfigDict(frozen=True)

    paths: dict[str, str] = Field(default_factory=dict)

    def has(self, tool: str) -> bool:
        return tool in self.paths

    def path_for(self, tool: str) -> str | None:
        return self.paths.get(tool)

    @property
    def missing(self) -> list[str]:
        return [tool for tool in ALL_TOOLS if tool not in self.paths]


def _binary_names(settings: Settings) -> dict[str, str]:
    return {
        GHOSTSCRIPT: settings.ghostscript_binary,
        PDFIMAGES: settings.pdfimages_binary,
        PDFTOTEXT: settings.pdftotext_binary,
        MUTOOL: settings.mutool_binary,
    }


def detect_capabilities(settings: Settings) -> ToolCapabilities:
    """Resolve every configured binary on ``PATH``."""
    paths: dict[str, str] = {}
    for tool, binary in _binary_names(settings).items():
        resolved = shutil.which(binary)
        if resolved:
            paths[tool] = resolved
        else:
            log.warning("tool_not_found", tool=tool, binary=binary)

    capabilities = ToolCapabilities(paths=paths)
    log.info(
        "tool_capabilities_detected",
        available=sorted(paths),
        missing=capabilities.missing,
    )
    return capabilities
