"""
Unit tests for repeated-failure and thrashing detection
"""

import pytest

from rotor.config import DetectorConfig
from rotor.detectors import FailureCounter, GutterDetector, GutterReason, WriteLog


class TestFailureCounter:
    """Counts keyed by exact command text"""

    def test_counts_per_command(self):
        counter = FailureCounter()
        assert counter.record_failure("npm test") == 1
        assert counter.record_failure("npm test") == 2
        assert counter.record_failure("npm  test") == 1
        assert counter.count("npm test") == 2
        assert counter.count("never-ran") == 0


class TestWriteLog:
    """Sliding-window write counting"""

    def test_writes_inside_window(self):
        log = WriteLog(window_seconds=600)
        for offset in range(4):
            log.record_write("a.py", now=1000 + offset * 100)
        assert log.window_count("a.py", now=1300) == 4

    def test_old_writes_fall_out(self):
        log = WriteLog(window_seconds=600)
        log.record_write("a.py", now=0)
        log.record_write("a.py", now=500)
        assert log.record_write("a.py", now=700) == 2

    def test_paths_are_independent(self):
        log = WriteLog(window_seconds=600)
        log.record_write("a.py", now=10)
        assert log.record_write("b.py", now=11) == 1

    def test_uses_clock_when_no_time_given(self):
        now = [100.0]
        log = WriteLog(window_seconds=10, clock=lambda: now[0])
        log.record_write("a.py")
        now[0] = 200.0
        assert log.window_count("a.py") == 0


class TestGutterDetector:
    """Gutter policy over the two heuristics"""

    def test_third_failure_trips(self):
        detector = GutterDetector()
        assert detector.record_failure("make") is None
        assert detector.record_failure("make") is None
        reason = detector.record_failure("make")
        assert reason == GutterReason("repeated_failure", "make", 3)
        assert reason.describe() == "⚠️ GUTTER: same command failed 3x: make"

    def test_two_failures_never_trip(self):
        detector = GutterDetector()
        for command in ["a", "b", "a", "b", "c"]:
            assert detector.record_failure(command) is None

    def test_five_writes_in_window_trip(self):
        detector = GutterDetector()
        results = [detector.record_write("src/x.py", now=1000 + i * 60) for i in range(5)]
        assert results[:4] == [None] * 4
        assert results[4].kind == "thrashing"
        assert results[4].describe() == "⚠️ THRASHING: src/x.py written 5x in 10 min"

    def test_spaced_writes_never_trip(self):
        """Writes more than a window apart never accumulate"""
        detector = GutterDetector()
        for i in range(20):
            assert detector.record_write("src/x.py", now=i * 601) is None

    @pytest.mark.parametrize("failures,expected", [(1, True), (2, False)])
    def test_from_config(self, failures, expected):
        detector = GutterDetector.from_config(
            DetectorConfig(failure_threshold=failures, thrash_threshold=2, thrash_window_seconds=60)
        )
        assert (detector.record_failure("x") is not None) is expected
        assert detector.record_write("f", now=0) is None
        assert detector.record_write("f", now=30) is not None
