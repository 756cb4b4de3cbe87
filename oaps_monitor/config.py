from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from . import PROHIBITED_LABELS
from . import constants as c


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


@dataclass
class MonitorConfig:
    # Gaze classifier (degrees)
    max_yaw_normal: float = c.MAX_YAW_NORMAL
    max_pitch_normal: float = c.MAX_PITCH_NORMAL
    strong_yaw_deg: float = c.STRONG_YAW_DEG
    strong_pitch_up_deg: float = c.STRONG_PITCH_UP_DEG
    strong_pitch_down_deg: float = c.STRONG_PITCH_DOWN_DEG
    face_center_tolerance_x: float = c.FACE_CENTER_TOLERANCE_X
    face_center_tolerance_y: float = c.FACE_CENTER_TOLERANCE_Y

    # Gaze state machine
    sustain_duration_ms: int = c.SUSTAIN_DURATION_MS
    centered_sustain_duration_ms: int = c.CENTERED_SUSTAIN_DURATION_MS
    gaze_cooldown_ms: int = c.GAZE_COOLDOWN_MS

    # Face absence
    min_face_confidence: float = c.MIN_FACE_CONFIDENCE
    face_absence_sustain_ms: int = c.FACE_ABSENCE_SUSTAIN_MS
    face_absence_cooldown_ms: int = c.FACE_ABSENCE_COOLDOWN_MS

    # Objects
    object_confidence_threshold: float = c.CONFIDENCE_THRESHOLD
    object_detection_cooldown_ms: int = c.OBJECT_DETECTION_COOLDOWN_MS
    prohibited_labels: list[str] = field(default_factory=lambda: list(PROHIBITED_LABELS))

    # Tab switches
    tab_switch_coalesce_ms: int = c.TAB_SWITCH_COALESCE_MS

    # Contract violations raise in strict mode (development) and are clamped otherwise.
    strict_contracts: bool = False
    log_level: str = "INFO"


_DURATION_FIELDS = (
    "sustain_duration_ms",
    "centered_sustain_duration_ms",
    "gaze_cooldown_ms",
    "face_absence_sustain_ms",
    "face_absence_cooldown_ms",
    "object_detection_cooldown_ms",
    "tab_switch_coalesce_ms",
)

_UNIT_FIELDS = (
    "min_face_confidence",
    "object_confidence_threshold",
    "face_center_tolerance_x",
    "face_center_tolerance_y",
)


def load_yaml(path: Path) -> dict[str, Any]:
    with path.open("r", encoding="utf-8") as handle:
        payload = yaml.safe_load(handle) or {}
    if not isinstance(payload, dict):
        raise ValueError(f"Expected mapping in YAML: {path}")
    return payload


def _apply_env(config: MonitorConfig) -> None:
    for f in fields(config):
        name = f"OAPS_{f.name.upper()}"
        raw = os.getenv(name)
        if raw is None:
            continue
        current = getattr(config, f.name)
        if isinstance(current, bool):
            setattr(config, f.name, _env_bool(name, current))
        elif isinstance(current, int):
            setattr(config, f.name, int(raw))
        elif isinstance(current, float):
            setattr(config, f.name, float(raw))
        elif isinstance(current, list):
            setattr(config, f.name, [item.strip() for item in raw.split(",") if item.strip()])
        else:
            setattr(config, f.name, raw.strip())


def validate_config(config: MonitorConfig) -> None:
    for name in _DURATION_FIELDS:
        value = int(getattr(config, name))
        if value < 0:
            raise ValueError(f"{name} must be >= 0, got {value}")
        setattr(config, name, value)

    for name in _UNIT_FIELDS:
        value = float(getattr(config, name))
        if not 0.0 <= value <= 1.0:
            raise ValueError(f"{name} must be in [0, 1], got {value}")
        setattr(config, name, value)

    if config.strong_yaw_deg < config.max_yaw_normal:
        raise ValueError("strong_yaw_deg must be >= max_yaw_normal")
    if config.strong_pitch_up_deg < config.max_pitch_normal:
        raise ValueError("strong_pitch_up_deg must be >= max_pitch_normal")
    if config.strong_pitch_down_deg < config.max_pitch_normal:
        raise ValueError("strong_pitch_down_deg must be >= max_pitch_normal")

    config.prohibited_labels = [str(label) for label in config.prohibited_labels]
    config.log_level = str(config.log_level).upper()


def load_config(config_path: Path | None = None) -> MonitorConfig:
    """Defaults, then an optional YAML file, then OAPS_* environment overrides."""
    config = MonitorConfig()
    if config_path is not None:
        for key, value in load_yaml(config_path).items():
            if hasattr(config, key):
                setattr(config, key, value)
    _apply_env(config)
    validate_config(config)
    return config
