from __future__ import annotations

import logging
import os
import time
import uuid
from pathlib import Path
from typing import Any

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from . import EVENT_TYPES, __version__
from .config import MonitorConfig, load_config
from .engine import MonitoringEngine
from .errors import ContractViolation
from .gaze import GazeMeasurement, is_face_centered
from .models import MetricsSummary, ReportPayload, SessionReport
from .objects import DetectionHit

logger = logging.getLogger(__name__)

CONFIG_PATH = os.getenv("OAPS_CONFIG_PATH")


class StartSessionRequest(BaseModel):
    session_id: str | None = None
    timestamp_ms: int | None = None


class StartSessionResponse(BaseModel):
    session_id: str
    created_at_ms: int


class GazeMeasurementRequest(BaseModel):
    yawDeg: float = 0.0
    pitchDeg: float = 0.0
    rollDeg: float = 0.0
    faceDetected: bool
    faceConfidence: float
    isCentered: bool = False
    sampledAt: int = Field(..., description="Epoch milliseconds")
    faceBbox: tuple[float, float, float, float] | None = Field(None, description="x, y, width, height in pixels")
    frameWidth: float | None = None
    frameHeight: float | None = None

    def to_measurement(self, config: MonitorConfig | None = None) -> GazeMeasurement:
        centered = self.isCentered
        # a raw face box overrides the adapter's own centering flag
        if self.faceBbox is not None and self.frameWidth and self.frameHeight:
            centered = is_face_centered(self.faceBbox, self.frameWidth, self.frameHeight, config)
        return GazeMeasurement(
            yaw_deg=self.yawDeg,
            pitch_deg=self.pitchDeg,
            roll_deg=self.rollDeg,
            face_detected=self.faceDetected,
            face_confidence=self.faceConfidence,
            is_centered=centered,
            sampled_at_ms=self.sampledAt,
        )


class DetectionHitRequest(BaseModel):
    label: str
    score: float
    bbox: tuple[float, float, float, float] = (0.0, 0.0, 0.0, 0.0)


class ObjectBatchRequest(BaseModel):
    timestamp_ms: int
    detections: list[DetectionHitRequest] = Field(default_factory=list)


class TabSwitchRequest(BaseModel):
    timestamp_ms: int
    reason: str = "visibilitychange"


class TickRequest(BaseModel):
    timestamp_ms: int


class StopSessionRequest(BaseModel):
    timestamp_ms: int | None = None


class EventsResponse(BaseModel):
    session_id: str
    gaze_state: str
    events: list[dict[str, Any]]


class RiskResponse(BaseModel):
    session_id: str
    score: int
    level: str


app = FastAPI(title="OAPS Monitoring API", version=__version__)
_config: MonitorConfig | None = None
_sessions: dict[str, MonitoringEngine] = {}


def _ensure_config() -> MonitorConfig:
    global _config
    if _config is None:
        _config = load_config(Path(CONFIG_PATH) if CONFIG_PATH else None)
    return _config


def _get_engine(session_id: str) -> MonitoringEngine:
    engine = _sessions.get(session_id)
    if engine is None:
        raise HTTPException(status_code=404, detail=f"Unknown session_id: {session_id}")
    return engine


def _contract_error(exc: ContractViolation) -> HTTPException:
    return HTTPException(status_code=409, detail=str(exc))


@app.get("/health")
async def health() -> dict[str, Any]:
    return {"ok": True, "version": __version__, "active_sessions": len(_sessions), "event_types": EVENT_TYPES}


@app.post("/session/start", response_model=StartSessionResponse)
async def start_session(payload: StartSessionRequest) -> StartSessionResponse:
    session_id = payload.session_id or str(uuid.uuid4())
    now_ms = payload.timestamp_ms if payload.timestamp_ms is not None else int(time.time() * 1000)
    engine = MonitoringEngine(_ensure_config())
    engine.start_session(now_ms=now_ms, session_id=session_id)
    _sessions[session_id] = engine
    return StartSessionResponse(session_id=session_id, created_at_ms=now_ms)


@app.post("/session/{session_id}/gaze")
async def ingest_gaze(session_id: str, payload: GazeMeasurementRequest) -> dict[str, Any]:
    engine = _get_engine(session_id)
    try:
        emitted = engine.on_gaze_measurement(payload.to_measurement(engine.config))
    except ContractViolation as exc:
        raise _contract_error(exc) from exc
    return {"gaze_state": engine.gaze_state.value, "events": [e.to_payload() for e in emitted]}


@app.post("/session/{session_id}/objects")
async def ingest_objects(session_id: str, payload: ObjectBatchRequest) -> dict[str, Any]:
    engine = _get_engine(session_id)
    hits = [DetectionHit(label=d.label, score=d.score, bbox=d.bbox) for d in payload.detections]
    try:
        emitted = engine.on_object_detection_batch(hits, payload.timestamp_ms)
    except ContractViolation as exc:
        raise _contract_error(exc) from exc
    return {"events": [e.to_payload() for e in emitted]}


@app.post("/session/{session_id}/tab-switch")
async def ingest_tab_switch(session_id: str, payload: TabSwitchRequest) -> dict[str, Any]:
    engine = _get_engine(session_id)
    try:
        emitted = engine.on_tab_switch(payload.timestamp_ms, payload.reason)
    except ContractViolation as exc:
        raise _contract_error(exc) from exc
    return {"events": [e.to_payload() for e in emitted]}


@app.post("/session/{session_id}/tick")
async def tick(session_id: str, payload: TickRequest) -> dict[str, Any]:
    engine = _get_engine(session_id)
    try:
        quality = engine.on_tick(payload.timestamp_ms)
    except ContractViolation as exc:
        raise _contract_error(exc) from exc
    return quality.to_payload()


@app.get("/session/{session_id}/risk", response_model=RiskResponse)
async def risk(session_id: str) -> RiskResponse:
    out = _get_engine(session_id).current_risk()
    return RiskResponse(session_id=session_id, score=out.score, level=out.level.value)


@app.get("/session/{session_id}/summary", response_model=MetricsSummary)
async def summary(session_id: str) -> MetricsSummary:
    return _get_engine(session_id).summary()


@app.get("/session/{session_id}/payload", response_model=ReportPayload)
async def report_payload(session_id: str) -> ReportPayload:
    return _get_engine(session_id).report_payload()


@app.get("/session/{session_id}/events", response_model=EventsResponse)
async def events(session_id: str) -> EventsResponse:
    engine = _get_engine(session_id)
    return EventsResponse(
        session_id=session_id,
        gaze_state=engine.gaze_state.value,
        events=[e.to_payload() for e in engine.events()],
    )


@app.post("/session/{session_id}/reset", response_model=StartSessionResponse)
async def reset_session(session_id: str, payload: StartSessionRequest) -> StartSessionResponse:
    engine = _get_engine(session_id)
    engine.reset_session()
    now_ms = payload.timestamp_ms if payload.timestamp_ms is not None else int(time.time() * 1000)
    engine.start_session(now_ms=now_ms, session_id=session_id)
    return StartSessionResponse(session_id=session_id, created_at_ms=now_ms)


@app.post("/session/{session_id}/stop", response_model=SessionReport)
async def stop_session(session_id: str, payload: StopSessionRequest | None = None) -> SessionReport:
    engine = _get_engine(session_id)
    try:
        report = engine.end_session(now_ms=payload.timestamp_ms if payload else None)
    except ContractViolation as exc:
        raise _contract_error(exc) from exc
    _sessions.pop(session_id, None)
    if report is None:
        raise HTTPException(status_code=409, detail=f"Session already stopped: {session_id}")
    return report
