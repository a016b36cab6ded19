"""
Error taxonomy for the derivative pipeline.
"""


class DerivativePipelineError(Exception):
    """Base class for pipeline failures."""


class ValidationError(DerivativePipelineError):
    """Raised when SVG input is oversized or not well-formed SVG."""


class TransportError(DerivativePipelineError):
    """Raised when a network call keeps failing after every retry attempt."""

    def __init__(self, message: str, url: str | None = None, attempts: int = 0):
        super().__init__(message)
        self.url = url
        self.attempts = attempts


class UpstreamStatusError(DerivativePipelineError):
    """Raised when a remote endpoint answers with a non-2xx status."""

    def __init__(self, message: str, status: int, url: str | None = None):
        super().__init__(message)
        self.status = status
        self.url = url


class RenderError(DerivativePipelineError):
    """Raised when the raster compositor or the PDF embedder fails."""


class JobTimeoutError(DerivativePipelineError, TimeoutError):
    """Raised when a job exceeds its wall-clock budget."""
