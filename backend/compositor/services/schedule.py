"""Insertion schedule for showcase overlays."""

from __future__ import annotations

import math
from typing import Optional

from compositor.core.constants import SCHEDULE_MERGE_TOLERANCE
from compositor.core.errors import InvalidConfigError


def round3(value: float) -> float:
    return round(value, 3)


def compute_schedule(
    duration: float,
    interval: float,
    insert_len: float,
    max_entries: Optional[int] = None,
) -> tuple[float, ...]:
    """Return ascending overlay start times for a clip of ``duration`` seconds.

    Overlays start every ``interval`` seconds while a full ``insert_len`` overlay
    still fits, and one more always starts at ``duration - insert_len`` (clamped
    to 0) so the last overlay ends flush with the clip.
    """
    if not isinstance(duration, (int, float)) or not math.isfinite(duration) or duration <= 0:
        raise InvalidConfigError(f"duration must be a positive finite number, got {duration!r}")
    if interval <= 0:
        raise InvalidConfigError(f"interval must be > 0, got {interval!r}")
    if insert_len <= 0:
        raise InvalidConfigError(f"insert_len must be > 0, got {insert_len!r}")

    last_start = duration - insert_len
    if max_entries is not None and last_start > 0 and last_start / interval > max_entries:
        raise InvalidConfigError(
            f"interval {interval}s over {duration:.3f}s would need more than {max_entries} overlays"
        )

    flush = max(0.0, last_start)
    kept: list[float] = []
    step = 1
    t = interval
    while t < last_start:
        if flush - t < SCHEDULE_MERGE_TOLERANCE:
            break
        if not kept or t - kept[-1] >= SCHEDULE_MERGE_TOLERANCE:
            kept.append(t)
        step += 1
        # Multiply instead of accumulating to keep float drift out of long clips.
        t = interval * step
    kept.append(flush)

    return tuple(sorted({round3(point) for point in kept}))
