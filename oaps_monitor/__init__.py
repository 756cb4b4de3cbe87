__version__ = "0.1.0"

EVENT_TYPES = ["GAZE_AWAY", "FACE_ABSENT", "OBJECT_DETECTED", "TAB_SWITCH"]

# COCO labels treated as prohibited during a proctored session.
PROHIBITED_LABELS = [
    "cell phone",
    "book",
    "laptop",
    "remote",
    "keyboard",
    "mouse",
    "tablet",
    "paper",
    "notepad",
]
