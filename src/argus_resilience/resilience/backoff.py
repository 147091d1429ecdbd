"""Duration parsing and restart backoff arithmetic."""

from __future__ import annotations

import math
import re
from enum import Enum
from typing import Final

_BARE_MILLIS: Final[re.Pattern[str]] = re.compile(r"^\d+$")
_DURATION: Final[re.Pattern[str]] = re.compile(r"^(\d+(?:\.\d+)?)\s*(ms|s|m|h)$")
_UNIT_MS: Final[dict[str, int]] = {
    "ms": 1,
    "s": 1_000,
    "m": 60_000,
    "h": 3_600_000,
}


class BackoffMode(str, Enum):
    """Restart backoff modes accepted by configuration."""

    EXPONENTIAL = "exponential"
    LINEAR = "linear"


def parse_delay(delay: str) -> int:
    """Parse ``"500ms"``, ``"2s"``, ``"1.5m"``, ``"1h"`` or bare ``"250"`` into milliseconds."""

    if not isinstance(delay, str):
        raise ValueError(f"delay must be a string, got {type(delay).__name__}")
    text = delay.strip()
    if _BARE_MILLIS.fullmatch(text):
        return int(text)

    match = _DURATION.fullmatch(text)
    if match is None:
        raise ValueError(f'invalid delay format: "{delay}"; expected "2s", "500ms", etc.')

    value = float(match.group(1))
    return math.floor(value * _UNIT_MS[match.group(2)] + 0.5)


def compute_backoff_delay(
    base_delay_ms: int,
    attempt: int,
    mode: BackoffMode | str | None = None,
    multiplier: int = 2,
) -> int:
    """Return the delay to wait before restart ``attempt`` (1-based).

    The sequences are fixed by existing behavior, not by the mode names:

    - ``exponential``: ``base, base, base*2, base*4, ...``
    - ``linear``: ``base, base*2, base*4, base*6, ...``
    """

    if mode is None or attempt <= 1:
        return base_delay_ms

    retry_index = attempt - 1
    resolved = BackoffMode(mode)
    if resolved is BackoffMode.LINEAR:
        return base_delay_ms * retry_index * multiplier
    return base_delay_ms * multiplier ** (retry_index - 1)


__all__ = [
    "BackoffMode",
    "compute_backoff_delay",
    "parse_delay",
]
