from __future__ import annotations

import math
from dataclasses import dataclass

from .config import MonitorConfig


@dataclass(frozen=True)
class GazeMeasurement:
    yaw_deg: float  # positive = right
    pitch_deg: float  # positive = looking down, negative = looking up
    roll_deg: float
    face_detected: bool
    face_confidence: float
    is_centered: bool
    sampled_at_ms: int


@dataclass(frozen=True)
class GazeClassification:
    in_safe_zone: bool
    is_strong_deviation: bool

    @property
    def is_minor_movement(self) -> bool:
        return not self.in_safe_zone and not self.is_strong_deviation


def classify_gaze(measurement: GazeMeasurement, config: MonitorConfig | None = None) -> GazeClassification:
    """
    Angle-based classification of one head-pose sample.

    Safe zone forces NORMAL downstream; strong deviation starts the sustain
    timer; anything in between is minor movement. Non-finite angles fall into
    minor movement.
    """
    cfg = config or MonitorConfig()
    yaw = float(measurement.yaw_deg)
    pitch = float(measurement.pitch_deg)
    if not (math.isfinite(yaw) and math.isfinite(pitch)):
        return GazeClassification(in_safe_zone=False, is_strong_deviation=False)

    in_safe_zone = abs(yaw) <= cfg.max_yaw_normal and abs(pitch) <= cfg.max_pitch_normal
    is_strong = (
        abs(yaw) > cfg.strong_yaw_deg
        or pitch < -cfg.strong_pitch_up_deg
        or pitch > cfg.strong_pitch_down_deg
    )
    return GazeClassification(in_safe_zone=in_safe_zone, is_strong_deviation=is_strong)


def is_face_present(measurement: GazeMeasurement, min_confidence: float) -> bool:
    if not measurement.face_detected:
        return False
    try:
        confidence = float(measurement.face_confidence)
    except (TypeError, ValueError):
        return False
    # NaN and out-of-range confidences count as "no face"
    if not math.isfinite(confidence) or confidence < 0.0 or confidence > 1.0:
        return False
    return confidence >= min_confidence


def is_face_centered(
    bbox: tuple[float, float, float, float],
    frame_width: float,
    frame_height: float,
    config: MonitorConfig | None = None,
) -> bool:
    """
    bbox is (x, y, width, height) in frame pixel coordinates.

    Used when a gaze request carries a raw face box instead of a precomputed
    `isCentered` flag.
    """
    cfg = config or MonitorConfig()
    if frame_width <= 0 or frame_height <= 0:
        return False
    x, y, w, h = bbox
    face_cx = x + w / 2.0
    face_cy = y + h / 2.0
    return (
        abs(face_cx - frame_width / 2.0) <= frame_width * cfg.face_center_tolerance_x
        and abs(face_cy - frame_height / 2.0) <= frame_height * cfg.face_center_tolerance_y
    )
