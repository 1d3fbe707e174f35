"""Builders and an in-memory media source shared by the test modules."""

import math

import numpy as np

from introfinder.models import BlackFrame, ProbeResult, QueuedEpisode

# Spacing of black frames reported by FakeSource (25 fps).
FRAME_INTERVAL = 0.04

# At least 16 bits apart from each other, so fillers never count as similar.
FILLERS = (0x00000000, 0x0F0F0F0F, 0xF0F0F0F0, 0xFFFFFFFF, 0x00FF00FF, 0xFF00FF00)


def make_fingerprint(seed: int, length: int) -> list[int]:
    """Random 32-bit fingerprint points; different seeds share (almost) nothing."""
    rng = np.random.default_rng(seed)
    return [int(v) for v in rng.integers(0, 2**32, size=length, dtype=np.int64)]


def make_filler(index: int, length: int) -> list[int]:
    """Constant points that no other filler index can match."""
    return [FILLERS[index % len(FILLERS)]] * length


def make_episode(episode_id: str, duration: float = 600.0, **kwargs) -> QueuedEpisode:
    defaults = dict(
        path=f"/media/{episode_id}.mkv",
        name=episode_id,
        series_name="Example Show",
        season_number=1,
        intro_fingerprint_end=min(duration * 0.25, 600.0),
        credits_fingerprint_start=max(duration - 300.0, 0.0),
    )
    defaults.update(kwargs)
    return QueuedEpisode(episode_id=episode_id, duration=duration, **defaults)


class FakeSource:
    """In-memory stand-in for FFmpegSource.

    Black frames are reported every FRAME_INTERVAL seconds from
    ``black_from[episode_id]`` onward.
    """

    def __init__(
        self,
        fingerprints=None,
        credits_fingerprints=None,
        chapters=None,
        black_from=None,
        silences=None,
        durations=None,
    ):
        self.fingerprints = fingerprints or {}
        self.credits_fingerprints = credits_fingerprints or {}
        self._chapters = chapters or {}
        self.black_from = black_from or {}
        self.silences = silences or {}
        self.durations = durations or {}
        self.black_frame_queries = []

    def probe(self, path):
        duration = self.durations.get(str(path))
        if duration is None:
            raise OSError(f"cannot open {path}")
        return ProbeResult(duration=duration)

    def fingerprint(self, episode, mode):
        table = self.credits_fingerprints if mode.value == "credits" else self.fingerprints
        value = table.get(episode.episode_id, [])
        if isinstance(value, Exception):
            raise value
        return list(value)

    def black_frames(self, episode, time_range, min_percentage):
        self.black_frame_queries.append(time_range)
        black_from = self.black_from.get(episode.episode_id)
        if black_from is None:
            return []

        first = max(time_range.start, black_from)
        i = math.ceil(first / FRAME_INTERVAL - 1e-9)
        frames = []
        while i * FRAME_INTERVAL < time_range.end:
            frames.append(BlackFrame(percentage=100, time=i * FRAME_INTERVAL))
            i += 1
        return frames

    def silence(self, episode, time_range):
        return list(self.silences.get(episode.episode_id, []))

    def chapters(self, episode):
        return list(self._chapters.get(episode.episode_id, []))
