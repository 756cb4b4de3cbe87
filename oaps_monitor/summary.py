from __future__ import annotations

import math
from typing import Iterable, Sequence

from .events import EventType, SessionEvent
from .models import MetricsSummary, ReportPayload
from .risk import RiskInput, calculate_risk_score
from .time_quality import round_half_up

EventLike = Sequence[SessionEvent]


def _type_name(event_type: EventType | str) -> str:
    return event_type.value if isinstance(event_type, EventType) else str(event_type)


def count_events_by_type(events: Iterable[SessionEvent], event_type: EventType | str) -> int:
    wanted = _type_name(event_type)
    return sum(1 for e in events if _type_name(e.type) == wanted)


def longest_duration(events: Iterable[SessionEvent], event_type: EventType | str) -> int:
    """Longest `durationMs` among events of a type; 0 when none carry one."""
    wanted = _type_name(event_type)
    longest = 0
    for e in events:
        if _type_name(e.type) != wanted:
            continue
        duration = e.metadata.get("durationMs")
        if isinstance(duration, (int, float)) and not isinstance(duration, bool) and math.isfinite(duration):
            longest = max(longest, int(duration))
    return longest


def build_risk_input(events: EventLike, session_duration_ms: int) -> RiskInput:
    return RiskInput(
        gaze_deviation_count=count_events_by_type(events, EventType.GAZE_AWAY),
        face_absence_count=count_events_by_type(events, EventType.FACE_ABSENT),
        object_detection_count=count_events_by_type(events, EventType.OBJECT_DETECTED),
        tab_switch_count=count_events_by_type(events, EventType.TAB_SWITCH),
        session_duration_ms=max(0, int(session_duration_ms)),
    )


def _clamp_ratio(focus_ratio: float | None) -> float:
    if focus_ratio is None or not math.isfinite(focus_ratio):
        return 1.0
    return min(1.0, max(0.0, float(focus_ratio)))


def aggregate_metrics(
    events: EventLike,
    session_duration_ms: int,
    focus_ratio: float | None = 1.0,
) -> MetricsSummary:
    risk_input = build_risk_input(events, session_duration_ms)
    risk = calculate_risk_score(risk_input)
    return MetricsSummary(
        gazeDeviationCount=risk_input.gaze_deviation_count,
        faceAbsenceCount=risk_input.face_absence_count,
        objectDetectionCount=risk_input.object_detection_count,
        tabSwitchCount=risk_input.tab_switch_count,
        riskScore=risk.score,
        riskLevel=risk.level.value,
        sessionDurationMs=risk_input.session_duration_ms,
        focusRatio=_clamp_ratio(focus_ratio),
        longestGazeAwayMs=longest_duration(events, EventType.GAZE_AWAY),
    )


def build_report_payload(
    events: EventLike,
    session_duration_ms: int,
    focus_ratio: float | None,
) -> ReportPayload:
    risk_input = build_risk_input(events, session_duration_ms)
    return ReportPayload(
        sessionDurationSec=int(round_half_up(risk_input.session_duration_ms / 1000.0)),
        focusRatio=round_half_up(_clamp_ratio(focus_ratio), 2),
        gazeIncidents=risk_input.gaze_deviation_count,
        # rounded in whole 100ms units, reported in seconds
        longestGazeAwaySec=round_half_up(longest_duration(events, EventType.GAZE_AWAY) / 100.0) / 10.0,
        faceAbsenceEvents=risk_input.face_absence_count,
        objectIncidents=risk_input.object_detection_count,
        tabSwitches=risk_input.tab_switch_count,
        riskScore=calculate_risk_score(risk_input).score,
    )


def summarize_events(events: Iterable[SessionEvent]) -> str:
    flagged = {t.value for t in EventType}
    counts: dict[str, int] = {}
    for e in events:
        key = _type_name(e.type)
        if key in flagged:
            counts[key] = counts.get(key, 0) + 1

    total = sum(counts.values())
    if total == 0:
        return "No critical events flagged."

    parts = ", ".join(f"{count}x {event_type.replace('_', ' ')}" for event_type, count in counts.items())
    return f"Summary: {parts}. Total flagged: {total}"
