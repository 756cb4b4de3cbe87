from __future__ import annotations

import dataclasses
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Iterable

from .config import MonitorConfig
from .errors import ContractViolation, guard_timestamp
from .events import EventLog, SessionEvent
from .gaze import GazeMeasurement, classify_gaze
from .gaze_state import FaceAbsenceTracker, GazeState, GazeStateMachine
from .models import MetricsSummary, ReportPayload, SessionReport
from .objects import DetectionHit, ObjectCooldownTracker
from .risk import RiskLevel, RiskOutput, calculate_risk_score
from .summary import aggregate_metrics, build_report_payload, build_risk_input, summarize_events
from .tab_switch import TabSwitchTracker
from .time_quality import TimeBucket, TimeQuality, TimeQualityAccumulator, bucket_for

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class TickToken:
    generation: int
    seq: int


@dataclass
class SessionState:
    """Everything one monitoring session owns. Discarded as a whole on teardown."""

    session_id: str
    generation: int
    started_at_ms: int
    config: MonitorConfig
    events: EventLog = field(default_factory=EventLog)
    gaze: GazeStateMachine | None = None
    absence: FaceAbsenceTracker | None = None
    objects: ObjectCooldownTracker | None = None
    tabs: TabSwitchTracker | None = None
    time_quality: TimeQualityAccumulator = field(default_factory=TimeQualityAccumulator)
    minor_movement: bool = False
    last_seen_ms: int = 0
    last_gaze_ms: int | None = None
    last_tick_ms: int | None = None
    next_seq: int = 0
    expected_seq: int = 0

    def __post_init__(self) -> None:
        self.gaze = self.gaze or GazeStateMachine(self.config)
        self.absence = self.absence or FaceAbsenceTracker(self.config)
        self.objects = self.objects or ObjectCooldownTracker(self.config)
        self.tabs = self.tabs or TabSwitchTracker(self.config)
        self.last_seen_ms = self.started_at_ms
        # anchor the clock so the first tick already accounts for time since start
        self.time_quality.update(self.started_at_ms, TimeBucket.FOCUSED)

    @property
    def duration_ms(self) -> int:
        return max(0, self.last_seen_ms - self.started_at_ms)


class MonitoringEngine:
    """
    Behavioral monitoring engine for a single subject.

    One session at a time. Every tick entry point runs under one lock, so all
    tracker mutations for a tick finish before the next tick starts. Callers
    that schedule ticks from several sources take a TickToken per call from
    `begin_tick()`; tokens from a torn-down session are dropped, and tokens
    used out of order are a contract violation.
    """

    def __init__(self, config: MonitorConfig | None = None):
        self.config = config or MonitorConfig()
        self._lock = threading.Lock()
        self._session: SessionState | None = None
        self._generation = 0
        self.last_report: SessionReport | None = None

    # ── session boundaries ──────────────────────────────────────────────────

    @property
    def session_id(self) -> str | None:
        with self._lock:
            return self._session.session_id if self._session else None

    @property
    def is_active(self) -> bool:
        with self._lock:
            return self._session is not None

    def start_session(self, now_ms: int | None = None, session_id: str | None = None) -> str:
        start = _now_ms() if now_ms is None else int(now_ms)
        with self._lock:
            if self._session is not None:
                logger.info("[oaps] Session %s replaced by a new session", self._session.session_id)
            self._generation += 1
            self._session = SessionState(
                session_id=session_id or str(uuid.uuid4()),
                generation=self._generation,
                started_at_ms=start,
                config=self.config,
            )
            self.last_report = None
            logger.info("[oaps] Session START: %s", self._session.session_id)
            return self._session.session_id

    def end_session(self, now_ms: int | None = None) -> SessionReport | None:
        """Stop the session, cancel pending ticks, and return its final report."""
        with self._lock:
            session = self._session
            if session is None:
                return None
            end = session.last_seen_ms if now_ms is None else int(now_ms)
            # a rejected end timestamp leaves the session running
            end = guard_timestamp(end, session.last_seen_ms, strict=self.config.strict_contracts, source="session-end")
            self._teardown_locked()

        session.last_seen_ms = end
        session.time_quality.update(end, self._bucket(session))

        report = self._build_report(session, end)
        self.last_report = report
        logger.info("[oaps] Session STOP: %s %s", session.session_id, report.eventSummary)
        return report

    def reset_session(self) -> None:
        with self._lock:
            session = self._teardown_locked()
            self.last_report = None
        if session is not None:
            logger.info("[oaps] Session RESET: %s", session.session_id)

    def _teardown_locked(self) -> SessionState | None:
        session = self._session
        self._session = None
        # invalidates every outstanding TickToken
        self._generation += 1
        return session

    # ── tick scheduling ─────────────────────────────────────────────────────

    def begin_tick(self) -> TickToken:
        with self._lock:
            if self._session is None:
                return TickToken(generation=self._generation, seq=-1)
            token = TickToken(generation=self._session.generation, seq=self._session.next_seq)
            self._session.next_seq += 1
            return token

    def _accept_locked(self, token: TickToken | None) -> SessionState | None:
        session = self._session
        if session is None:
            return None
        if token is None:
            session.next_seq += 1
            session.expected_seq += 1
            return session
        if token.generation != session.generation:
            logger.debug("[oaps] Dropping tick from cancelled session (generation %d)", token.generation)
            return None
        if token.seq < session.expected_seq:
            message = f"[oaps] Tick token reused: got seq {token.seq}, expected {session.expected_seq}"
            if self.config.strict_contracts:
                raise ContractViolation(message)
            logger.warning("%s; dropping tick", message)
            return None
        if token.seq > session.expected_seq:
            message = f"[oaps] Tick token out of order: got seq {token.seq}, expected {session.expected_seq}"
            if self.config.strict_contracts:
                raise ContractViolation(message)
            logger.warning(message)
        session.expected_seq = token.seq + 1
        return session

    def _touch(self, session: SessionState, now_ms: int) -> None:
        session.last_seen_ms = max(session.last_seen_ms, now_ms)

    def _append(self, session: SessionState, emitted: Iterable[SessionEvent | None]) -> list[SessionEvent]:
        out: list[SessionEvent] = []
        for event in emitted:
            if event is None:
                continue
            stored = session.events.append(event)
            logger.info("[oaps] %s %s %s", stored.type.value, stored.id, dict(stored.metadata))
            out.append(stored)
        return out

    @staticmethod
    def _bucket(session: SessionState) -> TimeBucket:
        return bucket_for(session.gaze.state, session.minor_movement)

    # ── tick entry points ───────────────────────────────────────────────────

    def on_gaze_measurement(self, measurement: GazeMeasurement, token: TickToken | None = None) -> list[SessionEvent]:
        with self._lock:
            session = self._accept_locked(token)
            if session is None:
                return []
            now = guard_timestamp(
                measurement.sampled_at_ms, session.last_gaze_ms, strict=self.config.strict_contracts, source="gaze"
            )
            if now != measurement.sampled_at_ms:
                measurement = dataclasses.replace(measurement, sampled_at_ms=now)
            session.last_gaze_ms = now
            self._touch(session, now)

            # absence is resolved before any gaze event can be emitted
            absence_event = session.absence.update(measurement)
            if session.absence.is_absent:
                session.gaze.mark_absent(now)
                session.minor_movement = False
                return self._append(session, [absence_event])

            classification = classify_gaze(measurement, self.config)
            session.minor_movement = classification.is_minor_movement
            return self._append(session, [session.gaze.update(measurement, classification)])

    def on_object_detection_batch(
        self,
        hits: Iterable[DetectionHit],
        now_ms: int,
        token: TickToken | None = None,
    ) -> list[SessionEvent]:
        with self._lock:
            session = self._accept_locked(token)
            if session is None:
                return []
            emitted = session.objects.update(list(hits), now_ms)
            self._touch(session, int(now_ms))
            return self._append(session, emitted)

    def on_tab_switch(self, now_ms: int, reason: str = "visibilitychange", token: TickToken | None = None) -> list[SessionEvent]:
        with self._lock:
            session = self._accept_locked(token)
            if session is None:
                return []
            event = session.tabs.update(now_ms, reason)
            self._touch(session, int(now_ms))
            return self._append(session, [event])

    def on_tick(self, now_ms: int, token: TickToken | None = None) -> TimeQuality:
        with self._lock:
            session = self._accept_locked(token)
            if session is None:
                return TimeQuality()
            now = guard_timestamp(now_ms, session.last_tick_ms, strict=self.config.strict_contracts, source="tick")
            session.last_tick_ms = now
            self._touch(session, now)
            session.time_quality.update(now, self._bucket(session))
            return session.time_quality.snapshot()

    # ── read-only views ─────────────────────────────────────────────────────

    @property
    def gaze_state(self) -> GazeState:
        with self._lock:
            return self._session.gaze.state if self._session else GazeState.NORMAL

    def events(self) -> tuple[SessionEvent, ...]:
        with self._lock:
            session = self._session
        return session.events.snapshot() if session else ()

    def time_quality(self) -> TimeQuality:
        with self._lock:
            return self._session.time_quality.snapshot() if self._session else TimeQuality()

    def _snapshot(self) -> tuple[tuple[SessionEvent, ...], int, TimeQuality]:
        with self._lock:
            session = self._session
            if session is None:
                return (), 0, TimeQuality()
            return session.events.snapshot(), session.duration_ms, session.time_quality.snapshot()

    def current_risk(self) -> RiskOutput:
        events, duration, _ = self._snapshot()
        if not events:
            return RiskOutput(score=0, level=RiskLevel.LOW)
        return calculate_risk_score(build_risk_input(events, duration))

    def summary(self) -> MetricsSummary:
        events, duration, quality = self._snapshot()
        return aggregate_metrics(events, duration, quality.focus_ratio)

    def report_payload(self) -> ReportPayload:
        events, duration, quality = self._snapshot()
        return build_report_payload(events, duration, quality.focus_ratio)

    def _build_report(self, session: SessionState, end_ms: int) -> SessionReport:
        events = session.events.snapshot()
        quality = session.time_quality.snapshot()
        duration = max(0, end_ms - session.started_at_ms)
        return SessionReport(
            sessionId=session.session_id,
            startTs=session.started_at_ms,
            endTs=end_ms,
            metrics=aggregate_metrics(events, duration, quality.focus_ratio),
            payload=build_report_payload(events, duration, quality.focus_ratio),
            timeQuality=quality.to_payload(),
            eventSummary=summarize_events(events),
            events=[e.to_payload() for e in events],
        )
