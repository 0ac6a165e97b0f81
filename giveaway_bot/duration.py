"""Free-form duration parsing for giveaway commands."""

from __future__ import annotations

import re
from typing import Dict, Optional

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS
# A "month" is a flat 30 days, not a calendar month.
MONTH_MS = 30 * DAY_MS
# Longest giveaway the engine accepts.
MAX_DURATION_MS = 365 * DAY_MS

UNIT_MS: Dict[str, int] = {
    "m": MINUTE_MS,
    "min": MINUTE_MS,
    "mins": MINUTE_MS,
    "minute": MINUTE_MS,
    "minutes": MINUTE_MS,
    "menit": MINUTE_MS,
    "h": HOUR_MS,
    "hr": HOUR_MS,
    "hrs": HOUR_MS,
    "hour": HOUR_MS,
    "hours": HOUR_MS,
    "jam": HOUR_MS,
    "d": DAY_MS,
    "day": DAY_MS,
    "days": DAY_MS,
    "hari": DAY_MS,
    "mo": MONTH_MS,
    "month": MONTH_MS,
    "months": MONTH_MS,
    "bulan": MONTH_MS,
}

DURATION_RE = re.compile(r"^\s*(\d+)\s*([^\W\d_]*)", re.UNICODE)


def parse_duration(text: Optional[str]) -> Optional[int]:
    """Convert text such as ``"5 minutes"`` or ``"2h"`` into milliseconds.

    The unit defaults to minutes when missing or unknown. Returns ``None`` when
    the text does not start with a positive integer.
    """
    if not text:
        return None
    match = DURATION_RE.match(text)
    if not match:
        return None
    amount = int(match.group(1))
    if amount <= 0:
        return None
    unit = match.group(2).lower()
    return amount * UNIT_MS.get(unit, MINUTE_MS)
