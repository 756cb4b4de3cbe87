from __future__ import annotations

# Object detector
CONFIDENCE_THRESHOLD = 0.65

# Gaze state machine
SUSTAIN_DURATION_MS = 2500
CENTERED_SUSTAIN_DURATION_MS = 3500
GAZE_COOLDOWN_MS = 5000

# Face absence
MIN_FACE_CONFIDENCE = 0.6
FACE_ABSENCE_SUSTAIN_MS = 2500
FACE_ABSENCE_COOLDOWN_MS = 5000

# Angle-based gaze calibration (degrees)
MAX_YAW_NORMAL = 18.0
MAX_PITCH_NORMAL = 22.0
STRONG_YAW_DEG = 25.0
STRONG_PITCH_UP_DEG = 30.0
# Looking down at a laptop screen is natural, so downward pitch is more lenient.
STRONG_PITCH_DOWN_DEG = 35.0

# Face bounding box centering tolerance (fraction of frame dimension)
FACE_CENTER_TOLERANCE_X = 0.20
FACE_CENTER_TOLERANCE_Y = 0.25

# Object detection
OBJECT_DETECTION_COOLDOWN_MS = 5000

# Tab switches closer together than this collapse into one event
TAB_SWITCH_COALESCE_MS = 800

# Saturated risk model: (weight per incident, incident cap)
RISK_WEIGHTS: dict[str, tuple[int, int]] = {
    "gaze_deviation": (8, 5),
    "face_absence": (15, 3),
    "object_detection": (20, 3),
    "tab_switch": (6, 5),
}
RISK_MEDIUM_THRESHOLD = 35
RISK_HIGH_THRESHOLD = 70
