"""Chapter name analyzer."""

import logging
import re
import threading

from introfinder.manifest import ChapterConfig, CreditsConfig, FingerprintConfig
from introfinder.models import AnalysisMode, Chapter, QueuedEpisode, Segment, TimeRange

logger = logging.getLogger(__name__)


class ChapterAnalyzer:
    """Finds intros and credits from chapter titles such as "Opening" or "Credits".

    Patterns are always matched case-insensitively, both for the candidate
    chapter and for its neighbor.
    """

    def __init__(
        self,
        config: ChapterConfig,
        fingerprint: FingerprintConfig,
        credits: CreditsConfig,
        source,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.config = config
        self.fingerprint = fingerprint
        self.credits = credits
        self.source = source
        self.cancel_event = cancel_event

    def analyze(self, episodes: list[QueuedEpisode], mode: AnalysisMode) -> dict[str, Segment]:
        expression = self.config.pattern_for(mode)
        if not expression or not expression.strip():
            return {}

        pattern = re.compile(expression, re.IGNORECASE)
        results: dict[str, Segment] = {}

        for episode in episodes:
            if self.cancel_event is not None and self.cancel_event.is_set():
                break
            if episode.is_analyzed(mode):
                continue

            segment = self.find_matching_chapter(episode, self.source.chapters(episode), pattern, mode)
            if segment is None or not segment.valid:
                continue

            results[episode.episode_id] = segment
            episode.set_analyzed(mode)

        return results

    def _duration_bounds(self, episode: QueuedEpisode, mode: AnalysisMode) -> tuple[float, float]:
        if mode == AnalysisMode.CREDITS:
            maximum = (
                self.credits.max_movie_credits_duration
                if episode.is_movie
                else self.credits.max_credits_duration
            )
            return self.credits.min_credits_duration, maximum
        return self.fingerprint.min_intro_duration, self.fingerprint.max_intro_duration

    def find_matching_chapter(
        self,
        episode: QueuedEpisode,
        chapters: list[Chapter],
        pattern: re.Pattern,
        mode: AnalysisMode,
    ) -> Segment | None:
        """Return the chapter whose title matches *pattern*, or None.

        Intros are searched front to back and credits back to front. The
        last chapter is considered to run until the end of the file.
        """
        if not chapters:
            return None

        chapters = sorted(chapters, key=lambda c: c.start)
        min_duration, max_duration = self._duration_bounds(episode, mode)
        reversed_search = mode == AnalysisMode.CREDITS
        order = range(len(chapters) - 1, -1, -1) if reversed_search else range(len(chapters))

        for i in order:
            chapter = chapters[i]
            if not chapter.title or not chapter.title.strip():
                continue

            next_start = chapters[i + 1].start if i + 1 < len(chapters) else episode.duration
            current = TimeRange(chapter.start, next_start)
            base = f'{episode.path}: Chapter "{chapter.title}" ({current.start} - {current.end})'

            if current.duration < min_duration or current.duration > max_duration:
                logger.debug("%s: ignoring (invalid duration)", base)
                continue

            if not pattern.search(chapter.title):
                logger.debug("%s: ignoring (does not match regular expression)", base)
                continue

            # A neighbor with the same keyword makes the boundary ambiguous.
            if reversed_search:
                adjacent = chapters[i - 1] if i > 0 else None
            else:
                adjacent = chapters[i + 1] if i + 1 < len(chapters) else None
            if adjacent is not None and adjacent.title and pattern.search(adjacent.title):
                logger.debug("%s: ignoring (adjacent chapter also matches)", base)
                continue

            logger.debug("%s: okay", base)
            return Segment.from_range(episode.episode_id, current)

        return None
