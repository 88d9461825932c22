from __future__ import annotations

import json
import re
from typing import Any, List, Optional

_SEPARATORS = re.compile(r"[\s,]+")
_PREFIX = re.compile(r"^ids:\s*", re.IGNORECASE)


def _clean(values: List[Any]) -> List[str]:
    out = []
    for value in values:
        text = "" if value is None else str(value).strip()
        if text:
            out.append(text)
    return out


def parse_ids_input(text: Optional[str]) -> List[str]:
    """
    Accept ids as "a,b c", "ids: a b", a JSON array of ids or {"id": ...} objects,
    or a JSON object with "ids" / "emails".
    """
    if not text or not text.strip():
        return []
    trimmed = text.strip()

    if trimmed[0] in "[{":
        try:
            parsed = json.loads(trimmed)
        except ValueError:
            parsed = None
        if isinstance(parsed, list):
            return _clean([item.get("id") if isinstance(item, dict) else item for item in parsed])
        if isinstance(parsed, dict):
            if isinstance(parsed.get("ids"), list):
                return _clean(parsed["ids"])
            if isinstance(parsed.get("emails"), list):
                return _clean([e.get("id") for e in parsed["emails"] if isinstance(e, dict)])

    return _clean(_SEPARATORS.split(_PREFIX.sub("", trimmed)))
