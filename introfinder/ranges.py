"""Contiguous range extraction over lists of similar timestamps."""

import math

from introfinder.models import TimeRange


def find_contiguous(times: list[float], max_gap: float) -> TimeRange | None:
    """Return the longest run of timestamps where neighbors are at most *max_gap* apart.

    The input does not need to be sorted. A trailing ``math.inf`` sentinel may
    be appended by callers to force the last real cluster closed; non-finite
    clusters are never returned. Ties between equally long runs go to the
    earliest one.
    """
    if not times:
        return None

    times = sorted(times)

    ranges: list[TimeRange] = []
    current = TimeRange(start=times[0], end=times[0])

    for prev, nxt in zip(times, times[1:]):
        if nxt - prev <= max_gap:
            current.end = nxt
            continue

        ranges.append(current)
        current = TimeRange(start=nxt, end=nxt)

    ranges.append(current)
    ranges = [r for r in ranges if math.isfinite(r.end)]

    if not ranges:
        return None

    # sorted() is stable, so the earliest of several equal-length runs wins
    return sorted(ranges)[0]
