"""Bounded subprocess invocation for the external PDF tools."""

from __future__ import annotations

import subprocess
from collections.abc import Sequence

import structlog

from pdfconform.errors import ToolExecutionError, ToolUnavailableError
from pdfconform.tools.capabilities import ToolCapabilities

log = structlog.get_logger(__name__)

# Characters of stderr kept in error messages and logs.
_STDERR_LIMIT = 500


class ToolRunner:
    """Runs a detected tool with an argument vector and a hard timeout.

    Tools missing from the capabilities record are never spawned.
    """

    def __init__(self, capabilities: ToolCapabilities, timeout: float = 180.0) -> None:
        self._capabilities = capabilities
        self._timeout = timeout

    @property
    def capabilities(self) -> ToolCapabilities:
        return self._capabilities

    def available(self, tool: str) -> bool:
        return self._capabilities.has(tool)

    def run(
        self,
        tool: str,
        args: Sequence[str],
        timeout: float | None = None,
    ) -> subprocess.CompletedProcess:
        executable = self._capabilities.path_for(tool)
        if executable is None:
            raise ToolUnavailableError(f"{tool} is not installed")

        command = [executable, *args]
        limit = timeout or self._timeout
        log.debug("tool_invoked", tool=tool, args=list(args), timeout=limit)

        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=limit,
                check=False,
            )
        except FileNotFoundError as exc:
            raise ToolUnavailableError(f"{tool} could not be executed: {exc}") from exc
        except PermissionError as exc:
            raise ToolUnavailableError(f"{tool} is not executable: {exc}") from exc
        except subprocess.TimeoutExpired as exc:
            log.warning("tool_timeout", tool=tool, timeout=limit)
            raise ToolExecutionError(f"{tool} timed out after {limit:.0f}s") from exc

        if result.returncode != 0:
            stderr = (result.stderr or "")[:_STDERR_LIMIT]
            log.warning(
                "tool_failed",
                tool=tool,
                returncode=result.returncode,
                stderr=stderr,
            )
            raise ToolExecutionError(
                f"{tool} exited with status {result.returncode}: {stderr.strip()}"
            )

        return result
