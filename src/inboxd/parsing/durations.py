from __future__ import annotations

import re
from typing import Optional

_OLDER_THAN = re.compile(r"^(\d+)([dwm]?)$", re.IGNORECASE)

# Gmail's older_than only takes days; weeks and months are converted.
_DAYS_PER_UNIT = {"": 1, "d": 1, "w": 7, "m": 30}


def parse_older_than(value: Optional[str]) -> Optional[int]:
    """'30d' -> 30, '2w' -> 14, '1m' -> 30, '45' -> 45; None when malformed."""
    if value is None:
        return None
    match = _OLDER_THAN.match(value.strip())
    if not match:
        return None
    return int(match.group(1)) * _DAYS_PER_UNIT[match.group(2).lower()]
