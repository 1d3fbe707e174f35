"""Shared data types used across introfinder."""

import threading
from dataclasses import dataclass, field
from enum import Enum, Flag, auto


class AnalysisMode(str, Enum):
    """Type of skippable segment to look for."""

    INTRODUCTION = "introduction"
    CREDITS = "credits"


class AnalyzerAction(str, Enum):
    """Which analyzers a season is allowed to run for one mode."""

    DEFAULT = "default"
    CHAPTER = "chapter"
    CHROMAPRINT = "chromaprint"
    BLACKFRAME = "blackframe"
    NONE = "none"


@dataclass
class TimeRange:
    """A start/end time pair in seconds.

    Sorting a list of ranges puts the longest range first.
    """

    start: float = 0.0
    end: float = 0.0

    @property
    def duration(self) -> float:
        return self.end - self.start

    def __lt__(self, other: "TimeRange") -> bool:
        return self.duration > other.duration

    def intersects(self, other: "TimeRange") -> bool:
        """True if either endpoint of *other* lies strictly inside this range."""
        return (
            self.start < other.start < self.end
            or self.start < other.end < self.end
        )


@dataclass
class Segment:
    """A located introduction or credits range for one episode.

    A segment whose end is not positive means "nothing found".
    """

    episode_id: str
    start: float = 0.0
    end: float = 0.0

    @classmethod
    def from_range(cls, episode_id: str, time_range: TimeRange) -> "Segment":
        return cls(episode_id=episode_id, start=time_range.start, end=time_range.end)

    @property
    def valid(self) -> bool:
        return self.end > 0.0

    @property
    def duration(self) -> float:
        return self.end - self.start

    def to_dict(self) -> dict:
        return {
            "episode_id": self.episode_id,
            "start": round(self.start, 4),
            "end": round(self.end, 4),
            "valid": self.valid,
        }


@dataclass(frozen=True)
class BlackFrame:
    """One near-black video frame reported by ffmpeg's blackframe filter."""

    percentage: int
    time: float


@dataclass
class Chapter:
    start: float
    title: str | None = None


@dataclass
class ProbeResult:
    """Metadata extracted from a media file via ffprobe."""

    duration: float
    has_audio: bool = True
    chapters: list[Chapter] = field(default_factory=list)


@dataclass
class QueuedEpisode:
    """An episode (or movie) queued for analysis.

    The analyzed flags are owned by the record and travel with it through the
    analyzer chain of a single season.
    """

    episode_id: str
    path: str
    duration: float
    name: str = ""
    series_name: str = ""
    season_number: int = 0
    is_movie: bool = False
    is_anime: bool = False
    intro_fingerprint_end: float = 0.0
    credits_fingerprint_start: float = 0.0
    analyzed: set[AnalysisMode] = field(default_factory=set)

    def is_analyzed(self, mode: AnalysisMode) -> bool:
        return mode in self.analyzed

    def set_analyzed(self, mode: AnalysisMode, value: bool = True) -> None:
        if value:
            self.analyzed.add(mode)
        else:
            self.analyzed.discard(mode)


class AnalysisWarning(Flag):
    NONE = 0
    INVALID_FINGERPRINT = auto()
    INCOMPATIBLE_FFMPEG = auto()
    DETECTION_FAILED = auto()


class WarningManager:
    """Accumulates warning flags raised while analyzing; safe across threads."""

    def __init__(self) -> None:
        self._flags = AnalysisWarning.NONE
        self._lock = threading.Lock()

    def set_flag(self, warning: AnalysisWarning) -> None:
        with self._lock:
            self._flags |= warning

    def has_flag(self, warning: AnalysisWarning) -> bool:
        return (self._flags & warning) == warning

    def clear(self) -> None:
        with self._lock:
            self._flags = AnalysisWarning.NONE

    def names(self) -> list[str]:
        return [w.name for w in AnalysisWarning if w.name != "NONE" and w in self._flags]
