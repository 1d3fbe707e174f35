"""Thread-safe collection of analysis results shared by season workers."""

import json
import threading
from pathlib import Path

from introfinder.models import AnalysisMode, Segment


class SegmentStore:
    """Episode id -> mode -> Segment, plus the episodes nothing was found for."""

    def __init__(self) -> None:
        self._segments: dict[str, dict[AnalysisMode, Segment]] = {}
        self._unmatched: dict[AnalysisMode, set[str]] = {}
        self._lock = threading.Lock()

    def update(self, mode: AnalysisMode, segments: dict[str, Segment]) -> None:
        with self._lock:
            for episode_id, segment in segments.items():
                self._segments.setdefault(episode_id, {})[mode] = segment
                self._unmatched.get(mode, set()).discard(episode_id)

    def mark_unmatched(self, mode: AnalysisMode, episode_ids) -> None:
        with self._lock:
            self._unmatched.setdefault(mode, set()).update(episode_ids)

    def get(self, episode_id: str) -> dict[AnalysisMode, Segment]:
        with self._lock:
            return dict(self._segments.get(episode_id, {}))

    def skippable(self, episode_id: str) -> dict[AnalysisMode, Segment]:
        """Only the segments that are valid and may be shown to clients."""
        return {mode: s for mode, s in self.get(episode_id).items() if s.valid}

    def unmatched(self, mode: AnalysisMode) -> set[str]:
        with self._lock:
            return set(self._unmatched.get(mode, set()))

    def __len__(self) -> int:
        with self._lock:
            return len(self._segments)

    def to_dict(self) -> dict:
        with self._lock:
            return {
                "segments": {
                    episode_id: {mode.value: s.to_dict() for mode, s in modes.items()}
                    for episode_id, modes in sorted(self._segments.items())
                },
                "unmatched": {
                    mode.value: sorted(ids) for mode, ids in self._unmatched.items()
                },
            }

    def save_json(self, path: str | Path) -> Path:
        path = Path(path)
        path.write_text(json.dumps(self.to_dict(), indent=2), encoding="utf-8")
        return path
