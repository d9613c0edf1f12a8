class PipelineError(Exception):
    """Base exception for all pipeline-related errors."""


class ToolUnavailableError(PipelineError):
    """Raised when an inspection or conversion tool is missing or unusable."""


class ToolExecutionError(PipelineError):
    """Raised when a tool ran but exited non-zero or timed out."""


class ConversionError(PipelineError):
    """Raised when a remediation stage produced no usable artifact."""


class CloudConnectivityError(ConversionError):
    """Raised when a cloud service could not be reached at all.

    Covers certificate trust failures, refused connections, DNS failures and
    timeouts. The remaining services of the cloud group are skipped.
    """


class CloudServiceError(ConversionError):
    """Raised when a cloud service answered with an error response."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RemediationExhaustedError(PipelineError):
    """Raised when no remediation stage ever produced a non-empty artifact."""


class PipelineCancelledError(PipelineError):
    """Raised between stages once cancellation has been requested."""
