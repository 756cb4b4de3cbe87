from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable

import typer
import uvicorn

from .config import MonitorConfig, load_config
from .engine import MonitoringEngine
from .errors import guard_non_negative
from .models import SessionReport
from .objects import DetectionHit
from .risk import RiskInput, calculate_risk_score
from .serve_api import GazeMeasurementRequest, ObjectBatchRequest, TabSwitchRequest, TickRequest

logger = logging.getLogger(__name__)

app = typer.Typer(
    help="OAPS behavioral monitoring engine commands (serve, replay, score).",
    no_args_is_help=True,
)


def _setup_logging(config: MonitorConfig) -> None:
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def replay_records(records: Iterable[dict[str, Any]], config: MonitorConfig) -> SessionReport:
    """
    Feed a recorded signal stream through a fresh engine.

    Record kinds: "start", "gaze", "objects", "tab", "tick", "end". A session
    is started implicitly at the first record's timestamp when no "start" is given.
    """
    engine = MonitoringEngine(config)
    end_ms: int | None = None
    for i, record in enumerate(records):
        kind = record.get("kind")
        if kind == "start":
            engine.start_session(now_ms=int(record["timestamp_ms"]), session_id=record.get("session_id"))
            continue
        if not engine.is_active:
            first_ts = record.get("timestamp_ms", record.get("sampledAt", 0))
            engine.start_session(now_ms=int(first_ts))

        if kind == "gaze":
            engine.on_gaze_measurement(GazeMeasurementRequest.model_validate(record).to_measurement(config))
        elif kind == "objects":
            batch = ObjectBatchRequest.model_validate(record)
            hits = [DetectionHit(label=d.label, score=d.score, bbox=d.bbox) for d in batch.detections]
            engine.on_object_detection_batch(hits, batch.timestamp_ms)
        elif kind == "tab":
            tab = TabSwitchRequest.model_validate(record)
            engine.on_tab_switch(tab.timestamp_ms, tab.reason)
        elif kind == "tick":
            engine.on_tick(TickRequest.model_validate(record).timestamp_ms)
        elif kind == "end":
            end_ms = int(record["timestamp_ms"])
            break
        else:
            raise ValueError(f"Unknown record kind at line {i + 1}: {kind!r}")

    report = engine.end_session(now_ms=end_ms)
    if report is None:
        raise ValueError("Replay stream contained no records")
    return report


def _read_jsonl(path: Path) -> Iterable[dict[str, Any]]:
    with path.open("r", encoding="utf-8") as handle:
        for line in handle:
            line = line.strip()
            if line:
                yield json.loads(line)


@app.command("serve")
def serve(
    host: str = typer.Option("0.0.0.0", "--host", help="Bind host."),
    port: int = typer.Option(8000, "--port", help="Bind port."),
) -> None:
    uvicorn.run("oaps_monitor.serve_api:app", host=host, port=port, reload=False)


@app.command("replay")
def replay(
    input_path: Path = typer.Option(
        ...,
        "--input",
        exists=True,
        dir_okay=False,
        help="JSONL stream of gaze/objects/tab/tick records.",
    ),
    config_path: Path | None = typer.Option(
        None,
        "--config-path",
        exists=True,
        help="Optional YAML config overriding thresholds and cooldowns.",
    ),
    include_events: bool = typer.Option(
        False,
        "--events/--no-events",
        help="Include the full ordered event log in the output.",
    ),
    report_out: Path | None = typer.Option(
        None,
        "--report-out",
        help="Optional path for the session report JSON. Printed to stdout when omitted.",
    ),
) -> None:
    config = load_config(config_path)
    _setup_logging(config)
    report = replay_records(_read_jsonl(input_path), config)
    payload = report.model_dump()
    if not include_events:
        payload.pop("events", None)
    text = json.dumps(payload, indent=2)
    if report_out is None:
        typer.echo(text)
        return
    report_out.parent.mkdir(parents=True, exist_ok=True)
    report_out.write_text(text + "\n", encoding="utf-8")
    typer.echo(f"[replay] Wrote report: {report_out}")
    typer.echo(f"[replay] risk={report.metrics.riskScore} level={report.metrics.riskLevel}")


@app.command("score")
def score(
    gaze: int = typer.Option(0, "--gaze", help="GAZE_AWAY incidents."),
    absence: int = typer.Option(0, "--absence", help="FACE_ABSENT incidents."),
    objects: int = typer.Option(0, "--objects", help="OBJECT_DETECTED incidents."),
    tabs: int = typer.Option(0, "--tabs", help="TAB_SWITCH incidents."),
    strict: bool = typer.Option(False, "--strict", help="Fail on negative counts instead of clamping."),
) -> None:
    risk_input = RiskInput(
        gaze_deviation_count=guard_non_negative(gaze, strict=strict, name="gaze"),
        face_absence_count=guard_non_negative(absence, strict=strict, name="absence"),
        object_detection_count=guard_non_negative(objects, strict=strict, name="objects"),
        tab_switch_count=guard_non_negative(tabs, strict=strict, name="tabs"),
    )
    out = calculate_risk_score(risk_input)
    typer.echo(json.dumps({"score": out.score, "level": out.level.value}))


if __name__ == "__main__":
    app()
