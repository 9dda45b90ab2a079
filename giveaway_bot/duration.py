"""Free-form duration parsing for giveaway lengths."""

from __future__ import annotations

import math
import re
from typing import Optional

MINUTE_MS = 60_000

_UNIT_MS = {
    "ms": 1,
    "msec": 1,
    "msecs": 1,
    "millisecond": 1,
    "milliseconds": 1,
    "s": 1_000,
    "sec": 1_000,
    "secs": 1_000,
    "second": 1_000,
    "seconds": 1_000,
    "m": MINUTE_MS,
    "min": MINUTE_MS,
    "mins": MINUTE_MS,
    "minute": MINUTE_MS,
    "minutes": MINUTE_MS,
    "h": 3_600_000,
    "hr": 3_600_000,
    "hrs": 3_600_000,
    "hour": 3_600_000,
    "hours": 3_600_000,
    "d": 86_400_000,
    "day": 86_400_000,
    "days": 86_400_000,
    "w": 604_800_000,
    "week": 604_800_000,
    "weeks": 604_800_000,
    "y": 31_557_600_000,
    "yr": 31_557_600_000,
    "yrs": 31_557_600_000,
    "year": 31_557_600_000,
    "years": 31_557_600_000,
}

TOKEN_RE = re.compile(r"^(-?(?:\d+)?\.?\d+)([a-z]+)$", re.IGNORECASE)
BARE_MINUTES_RE = re.compile(r"^\d+$")


def _token_ms(token: str) -> Optional[float]:
    if BARE_MINUTES_RE.match(token):
        return float(token) * MINUTE_MS
    match = TOKEN_RE.match(token)
    if not match:
        return None
    multiplier = _UNIT_MS.get(match.group(2).lower())
    if multiplier is None:
        return None
    return float(match.group(1)) * multiplier


def parse_duration(text: Optional[str]) -> Optional[int]:
    """Parse text like ``"1d 2h 30m"`` or ``"90"`` into milliseconds.

    Whitespace-separated tokens are either a number with a unit (``30m``,
    ``1.5h``, ``2days``) or a bare integer counted as minutes. Tokens that
    match neither form are skipped. Returns ``None`` for empty input or when
    the total is not a positive finite number.
    """
    if not text:
        return None
    total = 0.0
    for token in str(text).split():
        value = _token_ms(token)
        if value is not None:
            total += value
    if not math.isfinite(total):
        return None
    total_ms = round(total)
    return total_ms if total_ms > 0 else None
