"""Media source backed by ffmpeg: the analyzers' view of an episode file."""

import logging
import subprocess
import threading
from pathlib import Path

from introfinder import ffutil
from introfinder.manifest import SilenceConfig
from introfinder.models import (
    AnalysisMode,
    AnalysisWarning,
    BlackFrame,
    Chapter,
    ProbeResult,
    QueuedEpisode,
    TimeRange,
    WarningManager,
)

logger = logging.getLogger(__name__)


class FFmpegSource:
    """Answers fingerprint, black-frame, silence and chapter queries for episodes.

    Black-frame, silence and chapter failures are reported as empty results
    and flagged on *warnings*. Fingerprint failures raise
    ``ffutil.FingerprintError`` (or ``NoAudioStreamError``) so the matcher
    can substitute an empty fingerprint itself. One instance may be
    shared by several season workers.
    """

    def __init__(self, silence: SilenceConfig, warnings: WarningManager) -> None:
        self.silence_config = silence
        self.warnings = warnings
        self._probes: dict[str, ProbeResult] = {}
        self._lock = threading.Lock()

    def probe(self, path: Path | str) -> ProbeResult:
        key = str(path)
        with self._lock:
            cached = self._probes.get(key)
        if cached is not None:
            return cached

        result = ffutil.probe(Path(path))
        with self._lock:
            self._probes[key] = result
        return result

    def fingerprint(self, episode: QueuedEpisode, mode: AnalysisMode) -> list[int]:
        try:
            has_audio = self.probe(episode.path).has_audio
        except (OSError, ValueError, KeyError, subprocess.CalledProcessError) as e:
            raise ffutil.FingerprintError(f"Unable to probe {episode.path}: {e}") from e
        if not has_audio:
            raise ffutil.NoAudioStreamError(f"No audio stream in {episode.path}")

        if mode == AnalysisMode.CREDITS:
            start = episode.credits_fingerprint_start
            duration = episode.duration - start
        else:
            start = 0.0
            duration = episode.intro_fingerprint_end
        return ffutil.fingerprint(Path(episode.path), start, duration)

    def black_frames(
        self, episode: QueuedEpisode, time_range: TimeRange, min_percentage: int
    ) -> list[BlackFrame]:
        try:
            return ffutil.detect_black_frames(Path(episode.path), time_range, min_percentage)
        except (OSError, RuntimeError) as e:
            logger.warning("Black frame detection failed for %s: %s", episode.name or episode.path, e)
            self.warnings.set_flag(AnalysisWarning.DETECTION_FAILED)
            return []

    def silence(self, episode: QueuedEpisode, time_range: TimeRange) -> list[TimeRange]:
        try:
            return ffutil.detect_silence(
                Path(episode.path),
                threshold_db=self.silence_config.max_noise_db,
                min_duration=self.silence_config.min_duration,
                time_range=time_range,
            )
        except (OSError, RuntimeError) as e:
            logger.warning("Silence detection failed for %s: %s", episode.name or episode.path, e)
            self.warnings.set_flag(AnalysisWarning.DETECTION_FAILED)
            return []

    def chapters(self, episode: QueuedEpisode) -> list[Chapter]:
        try:
            return self.probe(episode.path).chapters
        except (OSError, ValueError, KeyError, subprocess.CalledProcessError) as e:
            logger.warning("Unable to read chapters of %s: %s", episode.name or episode.path, e)
            self.warnings.set_flag(AnalysisWarning.DETECTION_FAILED)
            return []
