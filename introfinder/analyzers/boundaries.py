"""Boundary refinement: snaps segment edges to chapter marks or silence."""

import logging
from dataclasses import replace
from typing import Callable

from introfinder.models import AnalysisMode, Chapter, Segment, TimeRange

logger = logging.getLogger(__name__)


def chapter_boundaries(chapters: list[Chapter], duration: float) -> list[float]:
    """Sorted chapter start times inside the file, ending with a virtual chapter at *duration*.

    Chapters that start before zero or after the end of the file are dropped.
    """
    starts = sorted(c.start for c in chapters if 0.0 <= c.start <= duration)
    return starts + [duration]


def _within(time: float, window: TimeRange) -> bool:
    return window.start < time < window.end


def snap_to_chapters(
    segment: Segment,
    boundaries: list[float],
    start_window: TimeRange,
    end_window: TimeRange,
) -> tuple[Segment, bool]:
    """Move segment edges onto nearby chapter boundaries.

    Returns the adjusted segment and whether a chapter resolved the end.
    A segment that starts at zero keeps that start.
    """
    adjusted = replace(segment)
    previous = 0.0

    for current in boundaries:
        if adjusted.start > 0 and _within(previous, start_window):
            adjusted.start = previous

        if _within(current, end_window):
            adjusted.end = current
            return adjusted, True

        previous = current

    return adjusted, False


def snap_to_silence(
    segment: Segment,
    silences: list[TimeRange],
    end_window: TimeRange,
    min_silence_duration: float,
) -> Segment:
    """End the segment at the first suitable silence inside *end_window*."""
    for silence in silences:
        logger.debug("%s silence: %.3f - %.3f", segment.episode_id, silence.start, silence.end)

        if (
            end_window.intersects(silence)
            and silence.duration >= min_silence_duration
            and silence.start >= segment.start
        ):
            return replace(segment, end=silence.start)

    return segment


def refine_segment(
    segment: Segment,
    duration: float,
    chapters: list[Chapter],
    mode: AnalysisMode,
    silence_lookup: Callable[[TimeRange], list[TimeRange]] | None = None,
    min_silence_duration: float = 0.33,
) -> Segment:
    """Return a copy of *segment* with its edges snapped to chapters or silence.

    Chapters win when one lies close to the end of the segment. Otherwise
    introductions (never credits) end at the first silence near their end.
    Invalid segments are returned unchanged.
    """
    if not segment.valid:
        return segment

    start_window = TimeRange(max(0.0, segment.start - 5), segment.start + 10)
    end_window = TimeRange(segment.end - 10, min(duration, segment.end + 5))

    adjusted, resolved = snap_to_chapters(
        segment, chapter_boundaries(chapters, duration), start_window, end_window
    )

    if not resolved and mode == AnalysisMode.INTRODUCTION and silence_lookup is not None:
        adjusted = snap_to_silence(
            adjusted, silence_lookup(end_window), end_window, min_silence_duration
        )

    if not adjusted.valid or adjusted.end < adjusted.start:
        logger.debug("%s: discarding refinement %s", segment.episode_id, adjusted)
        return segment

    if adjusted != segment:
        logger.debug(
            "%s refined: %.3f - %.3f -> %.3f - %.3f",
            segment.episode_id,
            segment.start,
            segment.end,
            adjusted.start,
            adjusted.end,
        )
    return adjusted
