"""JSON manifest schema: the contract between CLI/API and engine."""

import json
from dataclasses import dataclass, field
from pathlib import Path

from introfinder.models import AnalysisMode, AnalyzerAction


@dataclass
class FingerprintConfig:
    """Configuration for chromaprint-based segment matching."""

    enabled: bool = True
    shift_tolerance: int = 2
    max_bit_differences: int = 6
    max_time_skip: float = 3.5
    min_intro_duration: float = 15.0
    max_intro_duration: float = 120.0
    analysis_percent: float = 0.25
    analysis_length_limit: float = 10.0  # minutes


@dataclass
class CreditsConfig:
    """Configuration for black-frame credits detection."""

    min_credits_duration: float = 15.0
    max_credits_duration: float = 300.0
    max_movie_credits_duration: float = 300.0
    black_frame_min_percentage: int = 85


@dataclass
class SilenceConfig:
    max_noise_db: float = -50.0
    min_duration: float = 0.33


@dataclass
class ChapterConfig:
    """Regular expressions matched (case-insensitively) against chapter names."""

    intro_pattern: str = r"(^|\s)(Intro|Introduction|OP|Opening)(\s|$)"
    credits_pattern: str = r"(^|\s)(Credits?|ED|Ending|End|Outro)(\s|$)"

    def pattern_for(self, mode: AnalysisMode) -> str:
        if mode == AnalysisMode.CREDITS:
            return self.credits_pattern
        return self.intro_pattern


@dataclass
class EpisodeEntry:
    id: str
    path: Path
    name: str = ""
    duration: float | None = None
    is_movie: bool = False


@dataclass
class SeasonEntry:
    """One group of episodes analyzed together."""

    series: str
    season_number: int = 1
    episodes: list[EpisodeEntry] = field(default_factory=list)
    is_anime: bool = False
    actions: dict[AnalysisMode, AnalyzerAction] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return f"{self.series}/S{self.season_number:02d}"

    def action_for(self, mode: AnalysisMode) -> AnalyzerAction:
        return self.actions.get(mode, AnalyzerAction.DEFAULT)


@dataclass
class Manifest:
    """Top-level analysis manifest."""

    seasons: list[SeasonEntry] = field(default_factory=list)
    version: str = "1"
    modes: list[AnalysisMode] = field(
        default_factory=lambda: [AnalysisMode.INTRODUCTION, AnalysisMode.CREDITS]
    )
    max_parallelism: int = 2
    analyze_season_zero: bool = False
    output: Path | None = None
    fingerprint: FingerprintConfig = field(default_factory=FingerprintConfig)
    credits: CreditsConfig = field(default_factory=CreditsConfig)
    silence: SilenceConfig = field(default_factory=SilenceConfig)
    chapters: ChapterConfig = field(default_factory=ChapterConfig)


def _parse_mode(value: str) -> AnalysisMode:
    try:
        return AnalysisMode(value.lower())
    except ValueError:
        raise ValueError(f"Unknown analysis mode: {value!r}") from None


def _parse_action(value: str) -> AnalyzerAction:
    try:
        return AnalyzerAction(value.lower())
    except ValueError:
        raise ValueError(f"Unknown analyzer action: {value!r}") from None


def _parse_season(data: dict) -> SeasonEntry:
    if "series" not in data or "episodes" not in data:
        raise ValueError("Each season must contain 'series' and 'episodes' fields")

    episodes = []
    for ep in data["episodes"]:
        if "id" not in ep or "path" not in ep:
            raise ValueError("Each episode must contain 'id' and 'path' fields")
        episodes.append(
            EpisodeEntry(
                id=str(ep["id"]),
                path=Path(ep["path"]),
                name=ep.get("name", ""),
                duration=float(ep["duration"]) if ep.get("duration") is not None else None,
                is_movie=bool(ep.get("is_movie", False)),
            )
        )

    actions = {
        _parse_mode(mode): _parse_action(action)
        for mode, action in data.get("actions", {}).items()
    }

    return SeasonEntry(
        series=data["series"],
        season_number=int(data.get("season_number", 1)),
        episodes=episodes,
        is_anime=bool(data.get("is_anime", False)),
        actions=actions,
    )


def manifest_from_dict(data: dict) -> Manifest:
    """Build and validate a manifest from already-decoded JSON."""
    if "seasons" not in data:
        raise ValueError("Manifest must contain a 'seasons' field")

    fingerprint = FingerprintConfig(**data["fingerprint"]) if "fingerprint" in data else FingerprintConfig()
    credits = CreditsConfig(**data["credits"]) if "credits" in data else CreditsConfig()
    silence = SilenceConfig(**data["silence"]) if "silence" in data else SilenceConfig()
    chapters = ChapterConfig(**data["chapters"]) if "chapters" in data else ChapterConfig()

    m = Manifest(
        version=data.get("version", "1"),
        seasons=[_parse_season(s) for s in data["seasons"]],
        max_parallelism=int(data.get("max_parallelism", 2)),
        analyze_season_zero=bool(data.get("analyze_season_zero", False)),
        output=Path(data["output"]) if data.get("output") else None,
        fingerprint=fingerprint,
        credits=credits,
        silence=silence,
        chapters=chapters,
    )
    if "modes" in data:
        m.modes = [_parse_mode(v) for v in data["modes"]]
    return m


def load_manifest(path: str | Path) -> Manifest:
    """Load and validate a manifest from a JSON file."""
    path = Path(path)
    data = json.loads(path.read_text())
    return manifest_from_dict(data)
