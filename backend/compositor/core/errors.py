"""Error types raised by the compositing pipeline."""

from __future__ import annotations

from compositor.core.constants import ErrorCategory


class CompositorError(RuntimeError):
    category: ErrorCategory = ErrorCategory.UNEXPECTED_FAILURE


class MissingInputError(CompositorError):
    category = ErrorCategory.MISSING_INPUT


class InvalidConfigError(CompositorError):
    category = ErrorCategory.INVALID_CONFIG


class DownloadFailedError(CompositorError):
    category = ErrorCategory.DOWNLOAD_FAILED


class DurationProbeFailedError(CompositorError):
    category = ErrorCategory.DURATION_PROBE_FAILED


class RenderFailedError(CompositorError):
    category = ErrorCategory.RENDER_FAILED


class PublishFailedError(CompositorError):
    category = ErrorCategory.PUBLISH_FAILED


class JobNotFoundError(LookupError):
    pass


class JobStateError(RuntimeError):
    """A write was attempted against a job that already reached a terminal state."""
