from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class ContractViolation(ValueError):
    """Raised when a caller breaks the engine's input contract (strict mode only)."""


def guard_timestamp(now_ms: int, last_ms: int | None, *, strict: bool, source: str) -> int:
    """
    Enforce a non-decreasing timeline for a tracker.

    Returns the timestamp to use: `now_ms` itself, or `last_ms` when the clock
    went backwards and strict mode is off.
    """
    now_ms = int(now_ms)
    if last_ms is None or now_ms >= last_ms:
        return now_ms
    message = f"[oaps] {source}: timestamp went backwards ({now_ms} < {last_ms})"
    if strict:
        raise ContractViolation(message)
    logger.warning("%s; clamping to %d", message, last_ms)
    return last_ms


def guard_non_negative(value: int, *, strict: bool, name: str) -> int:
    value = int(value)
    if value >= 0:
        return value
    message = f"[oaps] {name} must be >= 0, got {value}"
    if strict:
        raise ContractViolation(message)
    logger.warning("%s; clamping to 0", message)
    return 0
