"""Tests for the chromaprint fingerprint matcher."""

import threading
from unittest.mock import patch

import numpy as np
import pytest

from introfinder.analyzers.chromaprint import (
    SAMPLES_TO_SECONDS,
    ChromaprintAnalyzer,
    _count_bits_array,
    count_bits,
    create_inverted_index,
    to_file_time,
)
from introfinder.ffutil import FingerprintError
from introfinder.manifest import CreditsConfig, FingerprintConfig, SilenceConfig
from introfinder.models import AnalysisMode, AnalysisWarning, Chapter, Segment, WarningManager
from tests.helpers import FakeSource, make_episode, make_filler, make_fingerprint


def _analyzer(source=None, **kwargs) -> ChromaprintAnalyzer:
    return ChromaprintAnalyzer(
        FingerprintConfig(), CreditsConfig(), SilenceConfig(), source=source, **kwargs
    )


class TestCountBits:
    @pytest.mark.parametrize(
        "value, expected",
        [
            (0, 0),
            (1, 1),
            (213, 5),
            (56_021, 10),
            (16_112_341, 16),
            (2_465_585_877, 19),
            (0xFFFFFFFF, 32),
            (0x80000000, 1),
            (-1, 32),
        ],
    )
    def test_count_bits(self, value, expected):
        assert count_bits(value) == expected

    def test_array_matches_scalar(self):
        values = [0, 1, 0b1011, 0xFFFFFFFF, 0x80000000, 0x12345678]
        counts = _count_bits_array(np.asarray(values, dtype=np.uint32))
        assert counts.tolist() == [count_bits(v) for v in values]


class TestInvertedIndex:
    def test_last_position_wins(self):
        index = create_inverted_index([1, 2, 3, 1, 5, 77, 42, 2])
        assert index == {1: 3, 2: 7, 3: 2, 5: 4, 42: 6, 77: 5}

    def test_empty(self):
        assert create_inverted_index([]) == {}

    def test_cached_per_episode(self):
        analyzer = _analyzer()
        first = analyzer.inverted_index("ep1", [1, 2, 3])
        # A second call for the same episode returns the cached index.
        assert analyzer.inverted_index("ep1", [9, 9, 9]) is first


class TestFindShifts:
    def test_tolerance_and_order(self):
        analyzer = _analyzer()
        shifts = analyzer.find_shifts({5: 2}, {5: 0, 6: 4})
        # 5 matches exactly at 0 (shift -2); 6 is within tolerance at 4 (shift 2).
        assert shifts == [-2, 2]

    def test_outside_tolerance(self):
        analyzer = _analyzer()
        assert analyzer.find_shifts({5: 0}, {100: 0}) == []


class TestCompareEpisodes:
    def test_identical_fingerprints(self):
        points = make_fingerprint(1, 200)
        lhs, rhs = _analyzer().compare_episodes("a", points, "b", list(points))

        assert lhs.start == 0.0
        assert lhs.end == pytest.approx(199 * SAMPLES_TO_SECONDS)
        assert rhs.start == 0.0
        assert rhs.end == pytest.approx(199 * SAMPLES_TO_SECONDS)

    def test_shifted_intro(self):
        shared = make_fingerprint(1, 200)
        a = shared + make_fingerprint(2, 300)
        b = make_fingerprint(3, 50) + shared + make_fingerprint(4, 250)

        lhs, rhs = _analyzer().compare_episodes("a", a, "b", b)

        assert lhs.start == 0.0
        assert lhs.end == pytest.approx(199 * SAMPLES_TO_SECONDS)
        assert rhs.start == pytest.approx(50 * SAMPLES_TO_SECONDS)
        assert rhs.end == pytest.approx(249 * SAMPLES_TO_SECONDS)

    def test_near_zero_start_snaps_to_zero(self):
        shared = make_fingerprint(1, 200)
        a = make_fingerprint(2, 30) + shared
        b = make_fingerprint(3, 30) + shared

        lhs, rhs = _analyzer().compare_episodes("a", a, "b", b)

        # 30 points is ~3.7s, inside the five second snap window.
        assert lhs.start == 0.0
        assert rhs.start == 0.0
        assert lhs.end == pytest.approx(229 * SAMPLES_TO_SECONDS)

    def test_too_short_match(self):
        shared = make_fingerprint(1, 50)  # ~6s, below the 15s minimum
        a = shared + make_fingerprint(2, 300)
        b = shared + make_fingerprint(3, 300)

        lhs, rhs = _analyzer().compare_episodes("a", a, "b", b)
        assert not lhs.valid
        assert not rhs.valid

    def test_empty_fingerprint(self):
        lhs, rhs = _analyzer().compare_episodes("a", [], "b", make_fingerprint(1, 200))
        assert lhs == Segment("a")
        assert rhs == Segment("b")

    def test_deterministic(self):
        shared = make_fingerprint(1, 200)
        a = shared + make_fingerprint(2, 100) + shared
        b = shared + make_fingerprint(3, 100) + shared

        first = _analyzer().compare_episodes("a", a, "b", b)
        second = _analyzer().compare_episodes("a", a, "b", b)
        assert first == second

        # Both copies of the shared audio match equally well; shift 0 is tried first.
        lhs, rhs = first
        assert lhs.start == 0.0
        assert rhs.start == 0.0
        assert lhs.end == pytest.approx(199 * SAMPLES_TO_SECONDS)

    def test_negative_shift_wins_tie(self):
        shared = make_fingerprint(1, 200)
        nearly_shared = [p ^ 1 for p in shared]
        a = make_filler(1, 150) + shared + make_filler(1, 150)
        b = nearly_shared + make_filler(2, 100) + shared

        analyzer = _analyzer()
        shifts = analyzer.find_shifts(
            analyzer.inverted_index("a", a), analyzer.inverted_index("b", b)
        )
        assert shifts.index(-150) < shifts.index(150)

        lhs, rhs = analyzer.compare_episodes("a", a, "b", b)

        # Shift -150 pairs a's intro with the start of b; +150 with the end.
        assert lhs.start == pytest.approx(150 * SAMPLES_TO_SECONDS)
        assert lhs.end == pytest.approx(349 * SAMPLES_TO_SECONDS)
        assert rhs.start == 0.0
        assert rhs.end == pytest.approx(199 * SAMPLES_TO_SECONDS)


class TestToFileTime:
    def test_mirrors_segment(self):
        seg = to_file_time(Segment("ep1", start=0.0, end=40.0), 600.0)
        assert seg == Segment("ep1", start=560.0, end=600.0)


class TestAnalyze:
    def test_shared_intro_across_season(self):
        shared = make_fingerprint(1, 200)
        source = FakeSource(fingerprints={
            "ep1": shared + make_filler(1, 300),
            "ep2": shared + make_filler(2, 300),
            "ep3": shared + make_filler(3, 300),
        })
        episodes = [make_episode(f"ep{i}") for i in (1, 2, 3)]

        results = _analyzer(source).analyze(episodes, AnalysisMode.INTRODUCTION)

        assert set(results) == {"ep1", "ep2", "ep3"}
        for seg in results.values():
            assert seg.start == 0.0
            assert seg.end == pytest.approx(199 * SAMPLES_TO_SECONDS)
        assert all(e.is_analyzed(AnalysisMode.INTRODUCTION) for e in episodes)

    def test_keeps_longest_segment_per_episode(self):
        short = make_fingerprint(1, 150)
        long = make_fingerprint(2, 250)
        source = FakeSource(fingerprints={
            "ep1": short + make_fingerprint(11, 300),
            "ep2": short + long + make_fingerprint(12, 100),
            "ep3": long + make_fingerprint(13, 300),
        })
        episodes = [make_episode(f"ep{i}") for i in (1, 2, 3)]

        results = _analyzer(source).analyze(episodes, AnalysisMode.INTRODUCTION)

        assert results["ep1"].end == pytest.approx(149 * SAMPLES_TO_SECONDS)
        assert results["ep2"].start == pytest.approx(150 * SAMPLES_TO_SECONDS)
        assert results["ep2"].duration == pytest.approx(249 * SAMPLES_TO_SECONDS)
        assert results["ep3"].start == 0.0

    def test_credits_are_mapped_to_file_time(self):
        shared = make_fingerprint(1, 200)
        source = FakeSource(credits_fingerprints={
            "ep1": make_fingerprint(11, 300) + shared,
            "ep2": make_fingerprint(12, 300) + shared,
        })
        episodes = [make_episode("ep1", duration=1200.0), make_episode("ep2", duration=1300.0)]

        results = _analyzer(source).analyze(episodes, AnalysisMode.CREDITS)

        length = 199 * SAMPLES_TO_SECONDS
        assert results["ep1"].start == pytest.approx(1200.0 - length)
        assert results["ep1"].end == 1200.0
        assert results["ep2"].start == pytest.approx(1300.0 - length)
        assert results["ep2"].end == 1300.0

    def test_skips_analyzed_episodes(self):
        shared = make_fingerprint(1, 200)
        source = FakeSource(fingerprints={"ep1": shared, "ep2": shared})
        episodes = [make_episode("ep1"), make_episode("ep2")]
        episodes[0].set_analyzed(AnalysisMode.INTRODUCTION)

        assert _analyzer(source).analyze(episodes, AnalysisMode.INTRODUCTION) == {}

    def test_fingerprint_error_does_not_abort_season(self):
        shared = make_fingerprint(1, 200)
        source = FakeSource(fingerprints={
            "ep1": FingerprintError("decode failed"),
            "ep2": shared + make_fingerprint(12, 300),
            "ep3": shared + make_fingerprint(13, 300),
        })
        warnings = WarningManager()
        episodes = [make_episode(f"ep{i}") for i in (1, 2, 3)]

        results = _analyzer(source, warnings=warnings).analyze(episodes, AnalysisMode.INTRODUCTION)

        assert set(results) == {"ep2", "ep3"}
        assert warnings.has_flag(AnalysisWarning.INVALID_FINGERPRINT)
        assert not episodes[0].is_analyzed(AnalysisMode.INTRODUCTION)

    def test_segment_longer_than_max_rejected(self):
        shared = make_fingerprint(1, 200)
        source = FakeSource(fingerprints={"ep1": shared, "ep2": shared})
        config = FingerprintConfig(max_intro_duration=20.0)
        analyzer = ChromaprintAnalyzer(config, CreditsConfig(), SilenceConfig(), source=source)

        results = analyzer.analyze([make_episode("ep1"), make_episode("ep2")], AnalysisMode.INTRODUCTION)
        assert results == {}

    def test_refines_with_chapters(self):
        shared = make_fingerprint(1, 200)
        source = FakeSource(
            fingerprints={"ep1": shared + make_fingerprint(11, 300), "ep2": shared + make_fingerprint(12, 300)},
            chapters={"ep1": [Chapter(0.0, "Opening"), Chapter(27.0, "Part A")]},
        )
        episodes = [make_episode("ep1"), make_episode("ep2")]

        results = _analyzer(source).analyze(episodes, AnalysisMode.INTRODUCTION)

        assert results["ep1"].end == 27.0
        assert results["ep2"].end == pytest.approx(199 * SAMPLES_TO_SECONDS)

    def test_cancelled_returns_nothing(self):
        shared = make_fingerprint(1, 200)
        source = FakeSource(fingerprints={"ep1": shared, "ep2": shared})
        cancel = threading.Event()
        cancel.set()

        results = _analyzer(source, cancel_event=cancel).analyze(
            [make_episode("ep1"), make_episode("ep2")], AnalysisMode.INTRODUCTION
        )
        assert results == {}

    def test_cancel_mid_season_keeps_matched_pair(self):
        shared = make_fingerprint(1, 200)
        source = FakeSource(fingerprints={f"ep{i}": shared + make_filler(i, 300) for i in (1, 2, 3, 4)})
        episodes = [make_episode(f"ep{i}") for i in (1, 2, 3, 4)]
        cancel = threading.Event()
        analyzer = _analyzer(source, cancel_event=cancel)
        compare = analyzer.compare_episodes

        def compare_then_cancel(*args):
            result = compare(*args)
            cancel.set()
            return result

        with patch.object(analyzer, "compare_episodes", side_effect=compare_then_cancel) as mock_compare:
            results = analyzer.analyze(episodes, AnalysisMode.INTRODUCTION)

        mock_compare.assert_called_once()
        assert set(results) == {"ep1", "ep2"}
        assert results["ep1"].end == pytest.approx(199 * SAMPLES_TO_SECONDS)
        assert [e.is_analyzed(AnalysisMode.INTRODUCTION) for e in episodes] == [True, True, False, False]

    def test_single_episode(self):
        source = FakeSource(fingerprints={"ep1": make_fingerprint(1, 200)})
        assert _analyzer(source).analyze([make_episode("ep1")], AnalysisMode.INTRODUCTION) == {}
