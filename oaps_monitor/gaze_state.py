from __future__ import annotations

import logging
from enum import Enum

from .config import MonitorConfig
from .errors import guard_timestamp
from .events import EventType, SessionEvent, new_event
from .gaze import GazeClassification, GazeMeasurement, is_face_present

logger = logging.getLogger(__name__)


class GazeState(str, Enum):
    NORMAL = "NORMAL"
    MONITORING_DEVIATION = "MONITORING_DEVIATION"
    ALERT_ACTIVE = "ALERT_ACTIVE"
    ABSENT = "ABSENT"


class GazeStateMachine:
    """
    Temporal gating of strong gaze deviation.

    - NORMAL -> MONITORING_DEVIATION on the first strong-deviation sample.
    - MONITORING_DEVIATION -> ALERT_ACTIVE once the deviation is sustained for
      the required duration and the alert cooldown has elapsed; emits GAZE_AWAY.
    - Safe-zone or minor-movement samples force NORMAL and clear the timer.
    - ALERT_ACTIVE never emits again until a pass through NORMAL.
    """

    def __init__(self, config: MonitorConfig | None = None):
        self.config = config or MonitorConfig()
        self.state = GazeState.NORMAL
        self._deviation_start_ms: int | None = None
        self._last_alert_ms: int | None = None
        self._last_ms: int | None = None

    def _set_state(self, state: GazeState, now_ms: int) -> None:
        if state != self.state:
            logger.debug("[oaps] gaze state %s -> %s at %d", self.state.value, state.value, now_ms)
            self.state = state

    def mark_absent(self, now_ms: int) -> None:
        """Face lost: park the machine in ABSENT. Never emits."""
        self._last_ms = guard_timestamp(now_ms, self._last_ms, strict=self.config.strict_contracts, source="gaze")
        self._deviation_start_ms = None
        self._set_state(GazeState.ABSENT, self._last_ms)

    def update(self, measurement: GazeMeasurement, classification: GazeClassification) -> SessionEvent | None:
        now = guard_timestamp(
            measurement.sampled_at_ms, self._last_ms, strict=self.config.strict_contracts, source="gaze"
        )
        self._last_ms = now

        # face re-acquired
        if self.state == GazeState.ABSENT:
            self._set_state(GazeState.NORMAL, now)

        if classification.in_safe_zone or not classification.is_strong_deviation:
            self._deviation_start_ms = None
            self._set_state(GazeState.NORMAL, now)
            return None

        # strong deviation
        if self.state == GazeState.NORMAL:
            self._set_state(GazeState.MONITORING_DEVIATION, now)
            self._deviation_start_ms = now

        if self.state != GazeState.MONITORING_DEVIATION:
            return None

        start = self._deviation_start_ms if self._deviation_start_ms is not None else now
        sustained_ms = now - start
        required_ms = (
            self.config.centered_sustain_duration_ms
            if measurement.is_centered
            else self.config.sustain_duration_ms
        )
        if sustained_ms < required_ms:
            return None
        if self._last_alert_ms is not None and (now - self._last_alert_ms) < self.config.gaze_cooldown_ms:
            return None

        self._set_state(GazeState.ALERT_ACTIVE, now)
        self._last_alert_ms = now
        yaw = float(measurement.yaw_deg)
        pitch = float(measurement.pitch_deg)
        return new_event(
            EventType.GAZE_AWAY,
            now,
            {
                "durationMs": sustained_ms,
                "yaw": yaw,
                "pitch": pitch,
                "maxDeviation": max(abs(yaw), abs(pitch)),
            },
        )


class FaceAbsenceTracker:
    """
    Sustained face loss, independent of gaze.

    At most one FACE_ABSENT per continuous absence episode; the first present
    sample re-arms detection.
    """

    def __init__(self, config: MonitorConfig | None = None):
        self.config = config or MonitorConfig()
        self._absence_start_ms: int | None = None
        self._last_emitted_ms: int | None = None
        self._episode_logged = False
        self._last_ms: int | None = None

    @property
    def is_absent(self) -> bool:
        return self._absence_start_ms is not None

    def update(self, measurement: GazeMeasurement) -> SessionEvent | None:
        now = guard_timestamp(
            measurement.sampled_at_ms, self._last_ms, strict=self.config.strict_contracts, source="face-absence"
        )
        self._last_ms = now

        if is_face_present(measurement, self.config.min_face_confidence):
            if self._absence_start_ms is not None:
                logger.debug("[oaps] face re-acquired after %d ms", now - self._absence_start_ms)
            self._absence_start_ms = None
            self._episode_logged = False
            return None

        if self._absence_start_ms is None:
            self._absence_start_ms = now

        duration_ms = now - self._absence_start_ms
        if duration_ms < self.config.face_absence_sustain_ms or self._episode_logged:
            return None
        if (
            self._last_emitted_ms is not None
            and (now - self._last_emitted_ms) < self.config.face_absence_cooldown_ms
        ):
            return None

        self._episode_logged = True
        self._last_emitted_ms = now
        return new_event(EventType.FACE_ABSENT, now, {"durationMs": duration_ms})
