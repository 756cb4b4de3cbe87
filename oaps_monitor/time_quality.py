from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum

from .gaze_state import GazeState


class TimeBucket(str, Enum):
    FOCUSED = "focused"
    MINOR_MOVEMENT = "minor_movement"
    DEVIATION = "deviation"
    ABSENCE = "absence"


@dataclass(frozen=True)
class TimeQuality:
    focused_ms: int = 0
    minor_movement_ms: int = 0
    deviation_ms: int = 0
    absence_ms: int = 0
    total_ms: int = 0
    focus_ratio: float = 1.0

    def to_payload(self) -> dict[str, float | int]:
        return {
            "focusedTimeMs": self.focused_ms,
            "minorMovementTimeMs": self.minor_movement_ms,
            "deviationTimeMs": self.deviation_ms,
            "absenceTimeMs": self.absence_ms,
            "totalSessionTimeMs": self.total_ms,
            "focusRatio": self.focus_ratio,
        }


def round_half_up(value: float, digits: int = 0) -> float:
    scale = 10 ** digits
    return math.floor(value * scale + 0.5) / scale


def bucket_for(state: GazeState, minor_movement: bool) -> TimeBucket:
    if state == GazeState.ABSENT:
        return TimeBucket.ABSENCE
    if state in (GazeState.ALERT_ACTIVE, GazeState.MONITORING_DEVIATION):
        return TimeBucket.DEVIATION
    if minor_movement:
        return TimeBucket.MINOR_MOVEMENT
    return TimeBucket.FOCUSED


def focus_ratio(focused_ms: int, minor_movement_ms: int, total_ms: int) -> float:
    if total_ms <= 0:
        return 1.0
    ratio = (focused_ms + minor_movement_ms) / total_ms
    return round_half_up(min(1.0, max(0.0, ratio)), 2)


@dataclass
class TimeQualityAccumulator:
    """
    Apportions wall-clock time between consecutive ticks into exactly one bucket.

    The first tick only anchors the clock. Deltas are clamped at 0, so the
    bucket sum always equals the elapsed time seen by the accumulator.
    """

    focused_ms: int = 0
    minor_movement_ms: int = 0
    deviation_ms: int = 0
    absence_ms: int = 0
    _last_tick_ms: int | None = None
    _focus_ratio: float = 1.0

    @property
    def total_ms(self) -> int:
        return self.focused_ms + self.minor_movement_ms + self.deviation_ms + self.absence_ms

    def update(self, now_ms: int, bucket: TimeBucket) -> int:
        now_ms = int(now_ms)
        if self._last_tick_ms is None:
            self._last_tick_ms = now_ms
            return 0

        delta_ms = max(0, now_ms - self._last_tick_ms)
        self._last_tick_ms = max(self._last_tick_ms, now_ms)
        if delta_ms == 0:
            return 0

        if bucket == TimeBucket.ABSENCE:
            self.absence_ms += delta_ms
        elif bucket == TimeBucket.DEVIATION:
            self.deviation_ms += delta_ms
        elif bucket == TimeBucket.MINOR_MOVEMENT:
            self.minor_movement_ms += delta_ms
        else:
            self.focused_ms += delta_ms

        self._focus_ratio = focus_ratio(self.focused_ms, self.minor_movement_ms, self.total_ms)
        return delta_ms

    def snapshot(self) -> TimeQuality:
        return TimeQuality(
            focused_ms=self.focused_ms,
            minor_movement_ms=self.minor_movement_ms,
            deviation_ms=self.deviation_ms,
            absence_ms=self.absence_ms,
            total_ms=self.total_ms,
            focus_ratio=self._focus_ratio,
        )
