import math

import pytest

from compositor.core.errors import InvalidConfigError
from compositor.services.schedule import compute_schedule, round3


def test_schedule_interior_points_and_flush_end() -> None:
    assert compute_schedule(20, 7, 3) == (7.0, 14.0, 17.0)


def test_schedule_flush_point_equal_to_first_interval() -> None:
    assert compute_schedule(10, 7, 3) == (7.0,)


def test_schedule_clip_shorter_than_overlay() -> None:
    assert compute_schedule(2, 7, 3) == (0.0,)
    assert compute_schedule(3, 7, 3) == (0.0,)


def test_schedule_flush_point_deduplicated() -> None:
    # flush point coincides with interior point 7 at 3-decimal precision
    assert compute_schedule(10.0004, 7, 3) == (7.0,)


def test_schedule_near_flush_interior_point_collapses() -> None:
    # interior 7.0004 and flush 7.0006 round apart but are 0.0002s apart
    assert compute_schedule(10.0006, 7.0004, 3) == (7.001,)


def test_schedule_interior_points_closer_than_tolerance_collapse() -> None:
    schedule = compute_schedule(3.0, 0.0002, 1)
    assert all(b - a >= 0.0005 for a, b in zip(schedule, schedule[1:]))
    assert schedule[0] == 0.0 and schedule[-1] == 2.0


@pytest.mark.parametrize(
    "duration,interval,insert_len",
    [(20, 7, 3), (61.537, 7, 3), (3.2, 0.5, 3), (600, 0.3, 1.5), (9.99, 2.5, 0.25)],
)
def test_schedule_properties(duration: float, interval: float, insert_len: float) -> None:
    schedule = compute_schedule(duration, interval, insert_len)

    assert schedule
    assert all(a < b for a, b in zip(schedule, schedule[1:]))
    assert all(0 <= value <= duration for value in schedule)
    assert schedule[-1] == round3(max(0, duration - insert_len))


@pytest.mark.parametrize(
    "duration,interval,insert_len",
    [(20, 0, 3), (20, -1, 3), (20, 7, 0), (0, 7, 3), (-5, 7, 3), (math.inf, 7, 3), (math.nan, 7, 3)],
)
def test_schedule_rejects_invalid_config(duration: float, interval: float, insert_len: float) -> None:
    with pytest.raises(InvalidConfigError):
        compute_schedule(duration, interval, insert_len)


def test_schedule_rejects_too_many_overlays() -> None:
    with pytest.raises(InvalidConfigError):
        compute_schedule(3600, 0.1, 1, max_entries=100)
