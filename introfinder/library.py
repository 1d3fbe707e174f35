"""Turns manifest seasons into per-season analysis queues."""

import logging
import subprocess

from introfinder.manifest import EpisodeEntry, Manifest, SeasonEntry
from introfinder.models import QueuedEpisode

logger = logging.getLogger(__name__)


def fingerprint_window(duration: float, analysis_percent: float, length_limit_minutes: float) -> float:
    """Seconds from the start of the file that are fingerprinted for intros.

    Files of five minutes or more are limited to ``analysis_percent`` of their
    runtime; every file is capped at ``length_limit_minutes``.
    """
    window = duration * analysis_percent if duration >= 5 * 60 else duration
    return min(window, 60 * length_limit_minutes)


def queue_episode(entry: EpisodeEntry, season: SeasonEntry, duration: float, manifest: Manifest) -> QueuedEpisode:
    max_credits = (
        manifest.credits.max_movie_credits_duration
        if entry.is_movie
        else manifest.credits.max_credits_duration
    )
    return QueuedEpisode(
        episode_id=entry.id,
        path=str(entry.path),
        duration=duration,
        name=entry.name or entry.path.name,
        series_name=season.series,
        season_number=season.season_number,
        is_movie=entry.is_movie,
        is_anime=season.is_anime,
        intro_fingerprint_end=fingerprint_window(
            duration,
            manifest.fingerprint.analysis_percent,
            manifest.fingerprint.analysis_length_limit,
        ),
        credits_fingerprint_start=max(duration - max_credits, 0.0),
    )


def build_queue(manifest: Manifest, source) -> dict[str, list[QueuedEpisode]]:
    """Group the manifest's episodes by season, probing durations where missing.

    Episodes that cannot be probed or that are listed twice within a season
    are skipped with a log message.
    """
    queue: dict[str, list[QueuedEpisode]] = {}

    for season in manifest.seasons:
        episodes = queue.setdefault(season.key, [])
        seen = {e.episode_id for e in episodes}

        for entry in season.episodes:
            if entry.id in seen:
                logger.debug("%s (%s) is already queued", entry.name or entry.path, entry.id)
                continue

            duration = entry.duration
            if duration is None:
                try:
                    duration = source.probe(entry.path).duration
                except (OSError, ValueError, KeyError, subprocess.CalledProcessError) as e:
                    logger.warning("Not queuing %s: unable to probe duration: %s", entry.path, e)
                    continue

            if duration <= 0:
                logger.warning("Not queuing %s: invalid duration %s", entry.path, duration)
                continue

            episodes.append(queue_episode(entry, season, duration, manifest))
            seen.add(entry.id)

    logger.debug("Queued %d episodes", sum(len(v) for v in queue.values()))
    return queue
