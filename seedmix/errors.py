"""
Pipeline error taxonomy.

Every error a stage can raise carries a stable ``code`` and a ``retryable``
flag; the orchestrator copies both into ``PipelineState.error`` when a run
fails. Retrying is always the caller's decision (a new run), never automatic.
"""
from typing import Optional


class PipelineError(Exception):
    """Base class for typed pipeline failures."""

    code = "INTERNAL_ERROR"
    retryable = False

    def __init__(self, message: str, code: Optional[str] = None, retryable: Optional[bool] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if retryable is not None:
            self.retryable = retryable


class NotFoundError(PipelineError):
    """Query or track could not be resolved."""

    code = "TRACK_NOT_FOUND"
    retryable = False


class RateLimitedError(PipelineError):
    """Upstream kept throttling after the internal retry."""

    code = "RATE_LIMITED"
    retryable = True


class UpstreamUnavailableError(PipelineError):
    """Network failure or 5xx from an external source."""

    code = "UPSTREAM_UNAVAILABLE"
    retryable = True


class StageTimeoutError(UpstreamUnavailableError):
    """A stage exceeded its overall time budget."""

    code = "STAGE_TIMEOUT"
    retryable = True


class ValidationError(PipelineError):
    """Malformed input to a stage."""

    code = "VALIDATION_ERROR"
    retryable = False


class CancelledError(PipelineError):
    """Run was cancelled externally."""

    code = "CANCELLED"
    retryable = False


class RunAlreadyStartedError(PipelineError):
    """A start request arrived for a run that already exists."""

    code = "ALREADY_STARTED"
    retryable = False
