"""
Exception taxonomy for the presenter reel pipeline.

Transient errors are retried locally with a bounded budget; everything else is
terminal for the unit of work that raised it and ends up on the Session record.
"""
from typing import List, Optional


class ReelError(Exception):
    """Base class for all pipeline errors."""


class PlanValidationError(ReelError):
    """A plan or script failed validation before anything was submitted."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "invalid plan")


class TransientServiceError(ReelError):
    """Network error, rate limit or 5xx from an external service."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class SubmissionError(ReelError):
    """Submission failed after the retry budget was spent."""


class GenerationFailedError(ReelError):
    """The generation service reported an explicit failure."""

    def __init__(self, segment_index: int, message: str):
        self.segment_index = segment_index
        super().__init__(f"segment {segment_index} failed: {message}")


class GenerationTimeoutError(ReelError, TimeoutError):
    """A task was still processing after the maximum number of polls."""

    def __init__(self, segment_index: int, attempts: int):
        self.segment_index = segment_index
        self.attempts = attempts
        super().__init__(f"segment {segment_index} timed out after {attempts} polls")


class DownloadError(ReelError):
    """A generated artifact could not be downloaded."""


class StorageError(ReelError):
    """Object storage rejected an upload or could not sign a URL."""


class ReferenceExpiredError(ReelError):
    """A signed reference URL is past its expiry and must be regenerated."""


class EncodingError(ReelError):
    """ffmpeg or ffprobe exited with a non-zero status."""


class AssemblyError(ReelError):
    """Clips could not be assembled into the output video."""


class InvalidTransitionError(ReelError):
    """A task was asked to move backwards in its state machine."""


class SessionNotFoundError(ReelError):
    pass


class SessionClosedError(ReelError):
    """The session already recorded its final artifact and is read-only."""


class SessionAbortedError(ReelError):
    pass


class ImageGenerationError(ReelError):
    """The image service failed to produce a reference image."""


class ConfigurationError(ReelError):
    """A required setting such as an API key is missing."""
