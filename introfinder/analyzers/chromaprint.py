"""Chromaprint analyzer: finds audio shared between the episodes of a season.

Each episode's fingerprint is turned into an inverted index (point value ->
last position). Values that (nearly) coincide between two episodes suggest a
shift aligning the two fingerprints; every candidate shift is then scored by
XOR-ing the aligned points and counting differing bits, and the longest run
of similar points becomes the shared segment.
"""

import logging
import math
import threading

import numpy as np

from introfinder.analyzers.boundaries import refine_segment
from introfinder.ffutil import FingerprintError, NoAudioStreamError
from introfinder.manifest import CreditsConfig, FingerprintConfig, SilenceConfig
from introfinder.models import (
    AnalysisMode,
    AnalysisWarning,
    QueuedEpisode,
    Segment,
    TimeRange,
    WarningManager,
)
from introfinder.ranges import find_contiguous

logger = logging.getLogger(__name__)

# Seconds of audio in one fingerprint point. Fixed by the chromaprint format.
SAMPLES_TO_SECONDS = 0.1238

_UINT32_MASK = 0xFFFFFFFF


def count_bits(number: int) -> int:
    """Number of set bits in a 32-bit unsigned value."""
    return bin(number & _UINT32_MASK).count("1")


def _count_bits_array(values: np.ndarray) -> np.ndarray:
    bits = np.unpackbits(values.astype("<u4").view(np.uint8))
    return bits.reshape(-1, 32).sum(axis=1)


def create_inverted_index(points: list[int]) -> dict[int, int]:
    """Map every fingerprint point to the last index it appears at."""
    index: dict[int, int] = {}
    for i, point in enumerate(points):
        index[point] = i
    return index


def to_file_time(segment: Segment, duration: float) -> Segment:
    """Convert a segment measured backwards from the end of file into file time."""
    return Segment(
        episode_id=segment.episode_id,
        start=duration - segment.end,
        end=duration - segment.start,
    )


def _snap_to_zero(time_range: TimeRange) -> TimeRange:
    # A match starting within the first five seconds starts at the beginning.
    if time_range.start <= 5:
        return TimeRange(start=0.0, end=time_range.end)
    return time_range


class ChromaprintAnalyzer:
    """Matches fingerprints across one season.

    An instance is meant to live for a single season: the inverted index
    cache is keyed by episode id and dropped together with the analyzer.
    """

    def __init__(
        self,
        config: FingerprintConfig,
        credits: CreditsConfig,
        silence: SilenceConfig,
        source=None,
        warnings: WarningManager | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.config = config
        self.credits = credits
        self.silence = silence
        self.source = source
        self.warnings = warnings or WarningManager()
        self.cancel_event = cancel_event
        self.min_duration = config.min_intro_duration
        self._inverted_index_cache: dict[str, dict[int, int]] = {}

    def _cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def inverted_index(self, episode_id: str, points: list[int]) -> dict[int, int]:
        cached = self._inverted_index_cache.get(episode_id)
        if cached is not None:
            return cached
        index = create_inverted_index(points)
        self._inverted_index_cache[episode_id] = index
        return index

    # --- pairwise comparison ---

    def compare_episodes(
        self,
        lhs_id: str,
        lhs_points: list[int],
        rhs_id: str,
        rhs_points: list[int],
    ) -> tuple[Segment, Segment]:
        """Find the longest stretch of audio shared by two fingerprints.

        Returns one segment per episode; both are invalid when nothing long
        enough was found.
        """
        pairs = self._search_inverted_index(lhs_id, lhs_points, rhs_id, rhs_points)

        best: tuple[TimeRange, TimeRange] | None = None
        for lhs_range, rhs_range in pairs:
            if best is None or lhs_range.duration > best[0].duration:
                best = (lhs_range, rhs_range)

        if best is None:
            logger.debug("No shared audio between %s and %s", lhs_id, rhs_id)
            return Segment(lhs_id), Segment(rhs_id)

        lhs_range, rhs_range = best
        return (
            Segment.from_range(lhs_id, _snap_to_zero(lhs_range)),
            Segment.from_range(rhs_id, _snap_to_zero(rhs_range)),
        )

    def find_shifts(self, lhs_index: dict[int, int], rhs_index: dict[int, int]) -> list[int]:
        """Return candidate alignments, smallest absolute shift first.

        Shifts of equal magnitude list the negative one first, which decides
        ties between equally long matches.
        """
        shifts: set[int] = set()
        tolerance = self.config.shift_tolerance

        for point, lhs_position in lhs_index.items():
            for delta in range(-tolerance, tolerance + 1):
                rhs_position = rhs_index.get((point + delta) & _UINT32_MASK)
                if rhs_position is not None:
                    shifts.add(rhs_position - lhs_position)

        return sorted(shifts, key=lambda s: (abs(s), s))

    def _search_inverted_index(
        self,
        lhs_id: str,
        lhs_points: list[int],
        rhs_id: str,
        rhs_points: list[int],
    ) -> list[tuple[TimeRange, TimeRange]]:
        lhs_index = self.inverted_index(lhs_id, lhs_points)
        rhs_index = self.inverted_index(rhs_id, rhs_points)

        lhs = np.asarray(lhs_points, dtype=np.uint32)
        rhs = np.asarray(rhs_points, dtype=np.uint32)

        pairs = []
        for shift in self.find_shifts(lhs_index, rhs_index):
            found = self.find_contiguous(lhs, rhs, shift)
            if found is not None:
                pairs.append(found)
        return pairs

    def find_contiguous(
        self, lhs: np.ndarray, rhs: np.ndarray, shift: int
    ) -> tuple[TimeRange, TimeRange] | None:
        """Longest similar region of two fingerprints aligned by *shift*."""
        lhs_offset = -shift if shift < 0 else 0
        rhs_offset = shift if shift > 0 else 0
        upper_limit = min(len(lhs), len(rhs)) - abs(shift)
        if upper_limit <= 0:
            return None

        diff = lhs[lhs_offset:lhs_offset + upper_limit] ^ rhs[rhs_offset:rhs_offset + upper_limit]
        similar = np.flatnonzero(_count_bits_array(diff) <= self.config.max_bit_differences)

        lhs_times = ((similar + lhs_offset) * SAMPLES_TO_SECONDS).tolist()
        rhs_times = ((similar + rhs_offset) * SAMPLES_TO_SECONDS).tolist()
        lhs_times.append(math.inf)
        rhs_times.append(math.inf)

        lhs_range = find_contiguous(lhs_times, self.config.max_time_skip)
        if lhs_range is None or lhs_range.duration < self.min_duration:
            return None

        # Both sides come from the same similar positions, so RHS has a run too.
        rhs_range = find_contiguous(rhs_times, self.config.max_time_skip)
        return lhs_range, rhs_range

    # --- season analysis ---

    def _max_duration(self, episode: QueuedEpisode, mode: AnalysisMode) -> float:
        if mode == AnalysisMode.INTRODUCTION:
            return self.config.max_intro_duration
        if episode.is_movie:
            return self.credits.max_movie_credits_duration
        return self.credits.max_credits_duration

    def _fingerprint(self, episode: QueuedEpisode, mode: AnalysisMode) -> list[int]:
        try:
            points = list(self.source.fingerprint(episode, mode))
        except (FingerprintError, NoAudioStreamError) as e:
            logger.debug("Caught fingerprint error for %s: %s", episode.name, e)
            self.warnings.set_flag(AnalysisWarning.INVALID_FINGERPRINT)
            return []

        if mode == AnalysisMode.CREDITS:
            points.reverse()
        return points

    def _keep_longest(self, found: dict[str, Segment], segment: Segment) -> None:
        saved = found.get(segment.episode_id)
        if saved is None or segment.duration > saved.duration:
            found[segment.episode_id] = segment

    def analyze(self, episodes: list[QueuedEpisode], mode: AnalysisMode) -> dict[str, Segment]:
        """Match every unanalyzed episode against the rest of its season.

        Episodes that received a segment are marked analyzed for *mode*. On
        cancellation the segments found so far are still returned.
        """
        self.min_duration = (
            self.credits.min_credits_duration
            if mode == AnalysisMode.CREDITS
            else self.config.min_intro_duration
        )

        queue = [e for e in episodes if not e.is_analyzed(mode)]
        if len(queue) <= 1:
            return {}

        fingerprints: dict[str, list[int]] = {}
        for episode in queue:
            if self._cancelled():
                return {}
            fingerprints[episode.episode_id] = self._fingerprint(episode, mode)

        found: dict[str, Segment] = {}
        by_id = {e.episode_id: e for e in queue}

        while queue and not self._cancelled():
            current = queue.pop(0)

            for remaining in queue:
                current_seg, remaining_seg = self.compare_episodes(
                    current.episode_id,
                    fingerprints[current.episode_id],
                    remaining.episode_id,
                    fingerprints[remaining.episode_id],
                )

                if not remaining_seg.valid or remaining_seg.duration > self._max_duration(remaining, mode):
                    continue

                # Credits were matched on reversed audio taken from the end of the file.
                if mode == AnalysisMode.CREDITS:
                    current_seg = to_file_time(current_seg, current.duration)
                    remaining_seg = to_file_time(remaining_seg, remaining.duration)

                self._keep_longest(found, current_seg)
                self._keep_longest(found, remaining_seg)
                break

            if current.episode_id not in found:
                logger.debug("%s: no shared %s found", current.name, mode.value)

        results: dict[str, Segment] = {}
        for episode_id, segment in found.items():
            episode = by_id[episode_id]
            results[episode_id] = self._refine(episode, segment, mode)
            episode.set_analyzed(mode)

        return results

    def _refine(self, episode: QueuedEpisode, segment: Segment, mode: AnalysisMode) -> Segment:
        if self.source is None:
            return segment
        return refine_segment(
            segment,
            episode.duration,
            self.source.chapters(episode),
            mode,
            silence_lookup=lambda window: self.source.silence(episode, window),
            min_silence_duration=self.silence.min_duration,
        )
