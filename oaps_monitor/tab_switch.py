from __future__ import annotations

import logging

from .config import MonitorConfig
from .errors import guard_timestamp
from .events import EventType, SessionEvent, new_event

logger = logging.getLogger(__name__)


class TabSwitchTracker:
    """Coalesces visibilitychange/blur bursts into a single TAB_SWITCH."""

    def __init__(self, config: MonitorConfig | None = None):
        self.config = config or MonitorConfig()
        self._last_logged_ms: int | None = None
        self._last_ms: int | None = None

    def update(self, now_ms: int, reason: str = "visibilitychange") -> SessionEvent | None:
        now = guard_timestamp(now_ms, self._last_ms, strict=self.config.strict_contracts, source="tab-switch")
        self._last_ms = now
        if self._last_logged_ms is not None and (now - self._last_logged_ms) < self.config.tab_switch_coalesce_ms:
            logger.debug("[oaps] tab switch (%s) coalesced", reason)
            return None
        self._last_logged_ms = now
        return new_event(EventType.TAB_SWITCH, now, {"reason": reason})
