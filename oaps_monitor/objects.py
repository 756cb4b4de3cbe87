from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Iterable

from .config import MonitorConfig
from .errors import guard_timestamp
from .events import EventType, SessionEvent, new_event

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DetectionHit:
    label: str
    score: float
    bbox: tuple[float, float, float, float]  # [x, y, width, height]


def is_prohibited_hit(hit: DetectionHit, config: MonitorConfig) -> bool:
    try:
        score = float(hit.score)
    except (TypeError, ValueError):
        return False
    if not math.isfinite(score):
        return False
    return score >= config.object_confidence_threshold and hit.label in config.prohibited_labels


class ObjectCooldownTracker:
    """Per-label cooldown over prohibited-object detections."""

    def __init__(self, config: MonitorConfig | None = None):
        self.config = config or MonitorConfig()
        self.last_emitted_ms: dict[str, int] = {}
        self._last_ms: int | None = None

    def update(self, hits: Iterable[DetectionHit], now_ms: int) -> list[SessionEvent]:
        now = guard_timestamp(now_ms, self._last_ms, strict=self.config.strict_contracts, source="objects")
        self._last_ms = now

        out: list[SessionEvent] = []
        for hit in hits:
            # adapters pre-filter, but the tracker does not trust them
            if not is_prohibited_hit(hit, self.config):
                continue
            last = self.last_emitted_ms.get(hit.label)
            if last is not None and (now - last) < self.config.object_detection_cooldown_ms:
                logger.debug("[oaps] object %r in cooldown (%d ms since last)", hit.label, now - last)
                continue
            self.last_emitted_ms[hit.label] = now
            out.append(
                new_event(
                    EventType.OBJECT_DETECTED,
                    now,
                    {"label": hit.label, "score": float(hit.score), "bbox": list(hit.bbox)},
                )
            )
        return out
