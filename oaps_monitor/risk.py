"""
Deterministic, pure risk-score calculator (saturated model).

    gazeImpact    = min(gazeIncidents, 5)    x 8
    absenceImpact = min(absenceIncidents, 3) x 15
    objectImpact  = min(objectIncidents, 3)  x 20
    tabImpact     = min(tabSwitches, 5)      x 6
    score         = clamp(round(sum), 0, 100)

Each category saturates at its cap.
Session duration is carried in RiskInput but does not enter the formula.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum

from .constants import RISK_HIGH_THRESHOLD, RISK_MEDIUM_THRESHOLD, RISK_WEIGHTS


class RiskLevel(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


@dataclass(frozen=True)
class RiskInput:
    gaze_deviation_count: int = 0
    face_absence_count: int = 0
    object_detection_count: int = 0
    tab_switch_count: int = 0
    session_duration_ms: int = 0


@dataclass(frozen=True)
class RiskOutput:
    score: int
    level: RiskLevel


def _impact(count: int, category: str) -> int:
    weight, cap = RISK_WEIGHTS[category]
    return min(max(int(count), 0), cap) * weight


def risk_level(score: int) -> RiskLevel:
    if score >= RISK_HIGH_THRESHOLD:
        return RiskLevel.HIGH
    if score >= RISK_MEDIUM_THRESHOLD:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def calculate_risk_score(risk_input: RiskInput) -> RiskOutput:
    raw = (
        _impact(risk_input.gaze_deviation_count, "gaze_deviation")
        + _impact(risk_input.face_absence_count, "face_absence")
        + _impact(risk_input.object_detection_count, "object_detection")
        + _impact(risk_input.tab_switch_count, "tab_switch")
    )
    score = min(100, max(0, int(math.floor(raw + 0.5))))
    return RiskOutput(score=score, level=risk_level(score))
