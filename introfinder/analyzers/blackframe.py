"""Black-frame analyzer: locates end credits shown over a black background.

The end of each file is bisected: two-second windows look for black frames,
the search range shrinks toward the first black frame, and widens again when the
boundary turns out to lie outside the initial guess.
"""

import logging
import threading

from introfinder.analyzers.boundaries import refine_segment
from introfinder.manifest import CreditsConfig
from introfinder.models import AnalysisMode, QueuedEpisode, Segment, TimeRange

logger = logging.getLogger(__name__)

# The search stops once the black-frame boundary is known to within this many seconds.
MAXIMUM_ERROR = 4.0


class BlackFrameAnalyzer:
    def __init__(
        self,
        config: CreditsConfig,
        source,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.config = config
        self.source = source
        self.cancel_event = cancel_event

    def _cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def _has_black_frames(self, episode: QueuedEpisode, time_range: TimeRange) -> bool:
        return len(self.source.black_frames(episode, time_range, self.config.black_frame_min_percentage)) > 0

    def analyze(self, episodes: list[QueuedEpisode], mode: AnalysisMode) -> dict[str, Segment]:
        """Find credits for every unanalyzed episode.

        Only movies are marked analyzed, so fingerprint matching can still
        replace these results for episodes.
        """
        if mode != AnalysisMode.CREDITS:
            raise ValueError("BlackFrameAnalyzer only supports credits analysis")

        results: dict[str, Segment] = {}
        search_start = 0.0

        for episode in episodes:
            if self._cancelled():
                break
            if episode.is_analyzed(mode):
                continue

            credits = self.analyze_chapters(episode)
            if credits is None:
                if search_start < self.config.min_credits_duration:
                    search_start = self.find_search_start(episode)

                credits = self.analyze_media_file(
                    episode, search_start, self.config.black_frame_min_percentage
                )

            if credits is None or not credits.valid:
                logger.debug("%s: no black frame credits found", episode.name)
                continue

            credits = refine_segment(
                credits, episode.duration, self.source.chapters(episode), mode
            )
            results[episode.episode_id] = credits
            if episode.is_movie:
                episode.set_analyzed(mode)

            # Neighboring episodes usually have credits of similar length.
            search_start = episode.duration - credits.start + self.config.min_credits_duration

        return results

    def analyze_media_file(
        self, episode: QueuedEpisode, search_start: float, minimum: int
    ) -> Segment | None:
        """Bisect the end of one file for the first black frame of the credits.

        *search_start* is measured in seconds back from the end of the file.
        Returns None when no black frame was ever seen.
        """
        search_distance = 2 * self.config.min_credits_duration
        max_upper = episode.duration - episode.credits_fingerprint_start
        upper_limit = min(search_start, max_upper)
        lower_limit = max(search_start - search_distance, self.config.min_credits_duration)

        # Both bounds are offsets from the end of the file: start >= end.
        start = upper_limit
        end = lower_limit
        first_frame_time = 0.0

        while start - end > MAXIMUM_ERROR:
            if self._cancelled():
                break

            midpoint = (start + end) / 2
            scan_time = episode.duration - midpoint
            window = TimeRange(scan_time, scan_time + 2)

            frames = self.source.black_frames(episode, window, minimum)
            logger.debug(
                "%s, dur %.1f, bisect [%.2f, %.2f], time [%.2f, %.2f]: %d black frames",
                episode.name,
                episode.duration,
                start,
                end,
                window.start,
                window.end,
                len(frames),
            )

            if not frames:
                # No credits here yet, slide toward the end of the file
                start = midpoint - 2

                if midpoint - lower_limit < MAXIMUM_ERROR:
                    lower_limit = max(
                        lower_limit - 0.5 * search_distance,
                        self.config.min_credits_duration,
                    )
                    end = lower_limit
            else:
                # Inside the credits, slide toward the start of the file
                end = midpoint
                first_frame_time = min(f.time for f in frames)

                if upper_limit - midpoint < MAXIMUM_ERROR:
                    upper_limit = min(upper_limit + 0.5 * search_distance, max_upper)
                    start = upper_limit

        if first_frame_time > 0:
            return Segment(episode.episode_id, start=first_frame_time, end=episode.duration)
        return None

    def analyze_chapters(self, episode: QueuedEpisode) -> Segment | None:
        """Use a chapter mark as the credits start if it is a hard cut to black."""
        latest = episode.duration - self.config.min_credits_duration
        starts = sorted(
            (
                c.start
                for c in self.source.chapters(episode)
                if episode.credits_fingerprint_start <= c.start <= latest
            ),
            reverse=True,
        )

        for chapter_start in starts:
            if self._cancelled():
                return None

            if not self._has_black_frames(episode, TimeRange(chapter_start, chapter_start + 1)):
                break

            # Black before the chapter means a fade, not a cut into the credits.
            if not self._has_black_frames(episode, TimeRange(chapter_start - 5, chapter_start - 4)):
                logger.debug("%s: credits start at chapter %.3f", episode.name, chapter_start)
                return Segment(episode.episode_id, start=chapter_start, end=episode.duration)

        return None

    def find_search_start(self, episode: QueuedEpisode) -> float:
        """Pick an initial bisection offset (seconds from the end) that is not already black."""
        max_start = episode.duration - episode.credits_fingerprint_start
        search_start = 3 * self.config.min_credits_duration

        while not self._cancelled():
            scan_time = episode.duration - search_start
            if not self._has_black_frames(episode, TimeRange(scan_time - 0.5, scan_time)):
                break

            search_start += 2 * self.config.min_credits_duration
            if search_start > max_start:
                search_start = max_start
                break

        return search_start
