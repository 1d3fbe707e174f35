"""Orchestrator: runs the analyzer chain over every season of a Manifest."""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from introfinder import ffutil
from introfinder.analyzers.blackframe import BlackFrameAnalyzer
from introfinder.analyzers.chapters import ChapterAnalyzer
from introfinder.analyzers.chromaprint import ChromaprintAnalyzer
from introfinder.library import build_queue
from introfinder.manifest import Manifest, SeasonEntry
from introfinder.models import (
    AnalysisMode,
    AnalysisWarning,
    AnalyzerAction,
    QueuedEpisode,
    WarningManager,
)
from introfinder.results import SegmentStore
from introfinder.source import FFmpegSource

logger = logging.getLogger(__name__)


@dataclass
class EngineResult:
    store: SegmentStore = field(default_factory=SegmentStore)
    output_path: Path | None = None
    episodes_queued: int = 0
    seasons_analyzed: int = 0
    warnings: list[str] = field(default_factory=list)
    cancelled: bool = False


def build_analyzers(
    season: SeasonEntry | None,
    first: QueuedEpisode,
    mode: AnalysisMode,
    manifest: Manifest,
    source,
    warnings: WarningManager,
    cancel_event: threading.Event | None = None,
) -> list:
    """Return the analyzers to run, in order, for one season and mode.

    Anime seasons run fingerprint matching before the black-frame search,
    other seasons after it. Movies are never fingerprint-matched.
    """
    action = season.action_for(mode) if season is not None else AnalyzerAction.DEFAULT
    if action == AnalyzerAction.NONE:
        return []

    def chromaprint() -> ChromaprintAnalyzer:
        return ChromaprintAnalyzer(
            manifest.fingerprint,
            manifest.credits,
            manifest.silence,
            source=source,
            warnings=warnings,
            cancel_event=cancel_event,
        )

    use_chromaprint = (
        manifest.fingerprint.enabled
        and not first.is_movie
        and action in (AnalyzerAction.DEFAULT, AnalyzerAction.CHROMAPRINT)
    )

    analyzers: list = []
    if action in (AnalyzerAction.DEFAULT, AnalyzerAction.CHAPTER):
        analyzers.append(
            ChapterAnalyzer(
                manifest.chapters, manifest.fingerprint, manifest.credits, source, cancel_event
            )
        )
    if use_chromaprint and first.is_anime:
        analyzers.append(chromaprint())
    if mode == AnalysisMode.CREDITS and action in (AnalyzerAction.DEFAULT, AnalyzerAction.BLACKFRAME):
        analyzers.append(BlackFrameAnalyzer(manifest.credits, source, cancel_event))
    if use_chromaprint and not first.is_anime:
        analyzers.append(chromaprint())
    return analyzers


def analyze_season(
    episodes: list[QueuedEpisode],
    mode: AnalysisMode,
    manifest: Manifest,
    source,
    store: SegmentStore,
    warnings: WarningManager,
    season: SeasonEntry | None = None,
    cancel_event: threading.Event | None = None,
) -> int:
    """Run every analyzer for *mode* over one season; return how many episodes got a segment."""
    if not episodes:
        return 0

    first = episodes[0]
    if not first.is_movie and first.season_number == 0 and not manifest.analyze_season_zero:
        logger.debug("Skipping specials of %s", first.series_name)
        return 0

    logger.info(
        "[Mode: %s] Analyzing %d files from %s season %d",
        mode.value,
        len(episodes),
        first.series_name,
        first.season_number,
    )

    found: set[str] = set()
    for analyzer in build_analyzers(season, first, mode, manifest, source, warnings, cancel_event):
        if cancel_event is not None and cancel_event.is_set():
            break
        segments = analyzer.analyze(episodes, mode)
        store.update(mode, segments)
        found.update(k for k, s in segments.items() if s.valid)

    # Episodes left unexamined by a cancelled run are not known to lack a segment.
    if cancel_event is not None and cancel_event.is_set():
        return len(found)

    unmatched = [e.episode_id for e in episodes if e.episode_id not in found]
    if unmatched:
        store.mark_unmatched(mode, unmatched)
    return len(found)


def process(
    manifest: Manifest,
    on_progress: Callable[[str, float], None] | None = None,
    cancel_event: threading.Event | None = None,
    source=None,
    store: SegmentStore | None = None,
) -> EngineResult:
    """Analyze every season of the manifest.

    Args:
        manifest: Validated analysis manifest.
        on_progress: Optional callback(stage_name, fraction_complete). May be
            called from worker threads.
        cancel_event: Once set, workers stop at the next loop boundary and
            the results found so far are returned.
        source: Media source to query; defaults to ffmpeg.
        store: Result collection to fill; a new one is created if omitted.
    """

    def _progress(stage: str, frac: float) -> None:
        if on_progress:
            on_progress(stage, frac)

    warnings = WarningManager()
    if source is None:
        ffutil.check_ffmpeg()
        if manifest.fingerprint.enabled and not ffutil.has_chromaprint():
            warnings.set_flag(AnalysisWarning.INCOMPATIBLE_FFMPEG)
            raise ffutil.FingerprintError(
                "Analysis terminated! Chromaprint is not enabled in the current ffmpeg build."
            )
        source = FFmpegSource(manifest.silence, warnings)

    store = store if store is not None else SegmentStore()

    _progress("Building analysis queue", 0.0)
    queue = build_queue(manifest, source)
    seasons = {s.key: s for s in manifest.seasons}

    episodes_queued = sum(len(v) for v in queue.values())
    total = episodes_queued * len(manifest.modes)
    if total == 0:
        raise ValueError("No episodes to analyze; check the manifest's seasons and modes")

    processed = 0
    seasons_analyzed = 0
    lock = threading.Lock()

    def run_season(key: str, episodes: list[QueuedEpisode]) -> None:
        nonlocal processed, seasons_analyzed
        try:
            for mode in manifest.modes:
                if cancel_event is not None and cancel_event.is_set():
                    return
                analyze_season(
                    episodes, mode, manifest, source, store, warnings,
                    season=seasons.get(key), cancel_event=cancel_event,
                )
                with lock:
                    processed += len(episodes)
                    frac = processed / total
                _progress(f"Analyzed {key} ({mode.value})", frac)
        except ffutil.FingerprintError as e:
            logger.warning("Unable to analyze %s: unable to fingerprint: %s", key, e)
            return

        with lock:
            seasons_analyzed += 1

    workers = max(1, manifest.max_parallelism)
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [pool.submit(run_season, key, eps) for key, eps in queue.items() if eps]
        for future in futures:
            future.result()

    output_path = None
    if manifest.output is not None:
        _progress("Writing results", 0.99)
        output_path = store.save_json(manifest.output)

    cancelled = cancel_event is not None and cancel_event.is_set()
    _progress("Cancelled" if cancelled else "Done", 1.0)
    return EngineResult(
        store=store,
        output_path=output_path,
        episodes_queued=episodes_queued,
        seasons_analyzed=seasons_analyzed,
        warnings=warnings.names(),
        cancelled=cancelled,
    )
