from __future__ import annotations

from pydantic import BaseModel, Field


class MetricsSummary(BaseModel):
    gazeDeviationCount: int = 0
    faceAbsenceCount: int = 0
    objectDetectionCount: int = 0
    tabSwitchCount: int = 0
    riskScore: int = Field(0, ge=0, le=100)
    riskLevel: str = "Low"
    sessionDurationMs: int = Field(0, ge=0)
    focusRatio: float = Field(1.0, ge=0.0, le=1.0)
    longestGazeAwayMs: int = 0


class ReportPayload(BaseModel):
    """Compressed numeric payload for the downstream narrative-report generator. No raw events."""

    sessionDurationSec: int = Field(..., ge=0)
    focusRatio: float = Field(..., ge=0.0, le=1.0)
    gazeIncidents: int = Field(..., ge=0)
    longestGazeAwaySec: float = Field(..., ge=0.0)
    faceAbsenceEvents: int = Field(..., ge=0)
    objectIncidents: int = Field(..., ge=0)
    tabSwitches: int = Field(..., ge=0)
    riskScore: int = Field(..., ge=0, le=100)


class SessionReport(BaseModel):
    sessionId: str
    startTs: int = Field(..., description="Epoch milliseconds")
    endTs: int = Field(..., description="Epoch milliseconds")
    metrics: MetricsSummary
    payload: ReportPayload
    timeQuality: dict[str, float]
    eventSummary: str
    events: list[dict] = Field(default_factory=list)
