"""
Stuck-pattern detection for a single iteration

Two streaming heuristics, both local and order-dependent:

- the same shell command failing repeatedly means the agent isn't using the
  failure to change its next action
- one file rewritten many times in a short window means it's thrashing

Counters never decay within an iteration; a new iteration gets a new
GutterDetector.
"""

import time
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from .constants import DetectorDefaults

logger = logging.getLogger(__name__)


class FailureCounter:
    """Failure counts keyed by exact command text"""

    def __init__(self):
        self._counts: Dict[str, int] = defaultdict(int)

    def record_failure(self, command: str) -> int:
        """Count one more failure for this command and return the new total"""
        self._counts[command] += 1
        return self._counts[command]

    def count(self, command: str) -> int:
        return self._counts.get(command, 0)


class WriteLog:
    """Write timestamps keyed by file path, queried through a sliding window"""

    def __init__(self, window_seconds: float = DetectorDefaults.THRASH_WINDOW_SECONDS,
                 clock: Callable[[], float] = time.time):
        self.window_seconds = window_seconds
        self.clock = clock
        self._writes: Dict[str, List[float]] = defaultdict(list)

    def record_write(self, path: str, now: Optional[float] = None) -> int:
        """Record a write and return how many fall in the trailing window"""
        now = self.clock() if now is None else now
        self._writes[path].append(now)
        return self.window_count(path, now)

    def window_count(self, path: str, now: Optional[float] = None) -> int:
        now = self.clock() if now is None else now
        cutoff = now - self.window_seconds
        return sum(1 for ts in self._writes.get(path, ()) if ts >= cutoff)


@dataclass(frozen=True)
class GutterReason:
    """Why the detector decided the agent is stuck"""
    kind: str  # "repeated_failure" or "thrashing"
    subject: str
    count: int
    window_seconds: float = DetectorDefaults.THRASH_WINDOW_SECONDS

    def describe(self) -> str:
        if self.kind == "repeated_failure":
            return f"⚠️ GUTTER: same command failed {self.count}x: {self.subject}"
        return f"⚠️ THRASHING: {self.subject} written {self.count}x in {self.window_seconds / 60:g} min"


class GutterDetector:
    """
    Combines the failure counter and the write log with the gutter policy.

    record_failure/record_write return the GutterReason the moment a threshold
    is reached, otherwise None.
    """

    def __init__(self,
                 failure_threshold: int = DetectorDefaults.FAILURE_THRESHOLD,
                 thrash_threshold: int = DetectorDefaults.THRASH_THRESHOLD,
                 thrash_window_seconds: float = DetectorDefaults.THRASH_WINDOW_SECONDS,
                 clock: Callable[[], float] = time.time):
        self.failure_threshold = failure_threshold
        self.thrash_threshold = thrash_threshold
        self.failures = FailureCounter()
        self.writes = WriteLog(thrash_window_seconds, clock=clock)

    @classmethod
    def from_config(cls, detector_config, clock: Callable[[], float] = time.time) -> 'GutterDetector':
        return cls(
            failure_threshold=detector_config.failure_threshold,
            thrash_threshold=detector_config.thrash_threshold,
            thrash_window_seconds=detector_config.thrash_window_seconds,
            clock=clock,
        )

    def record_failure(self, command: str) -> Optional[GutterReason]:
        count = self.failures.record_failure(command)
        logger.debug(f"Failure #{count} for command: {command}")
        if count >= self.failure_threshold:
            return GutterReason("repeated_failure", command, count)
        return None

    def record_write(self, path: str, now: Optional[float] = None) -> Optional[GutterReason]:
        count = self.writes.record_write(path, now)
        if count >= self.thrash_threshold:
            return GutterReason("thrashing", path, count, self.writes.window_seconds)
        return None
