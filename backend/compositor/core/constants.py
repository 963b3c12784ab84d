"""Project-wide constants and state definitions."""

from __future__ import annotations

from enum import Enum


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATES = {JobStatus.COMPLETED, JobStatus.FAILED}


class ErrorCategory(str, Enum):
    MISSING_INPUT = "MissingInput"
    INVALID_CONFIG = "InvalidConfig"
    DOWNLOAD_FAILED = "DownloadFailed"
    DURATION_PROBE_FAILED = "DurationProbeFailed"
    RENDER_FAILED = "RenderFailed"
    PUBLISH_FAILED = "PublishFailed"
    UNEXPECTED_FAILURE = "UnexpectedFailure"


# Coarse progress milestones, observability only.
PROGRESS_DOWNLOADED = 10
PROGRESS_PROBED = 20
PROGRESS_SCHEDULED = 30
PROGRESS_RENDERING = 50
PROGRESS_RENDERED = 80
PROGRESS_PUBLISHED = 95
PROGRESS_DONE = 100

# Overlay windows stop this far short of their nominal end so that
# back-to-back overlays never share a frame.
OVERLAY_WINDOW_EPSILON = 0.01

# Raw insertion points closer than this collapse into one schedule entry.
SCHEDULE_MERGE_TOLERANCE = 0.0005
