from __future__ import annotations

import re
from typing import Optional

from inboxd.rules.core import Rule

_WHITESPACE = re.compile(r"\s")


def quote_sender(sender: str) -> str:
    # Gmail treats an unquoted space as a term separator.
    if _WHITESPACE.search(sender):
        return '"' + sender.replace('"', '\\"') + '"'
    return sender


def build_rule_query(rule: Optional[Rule]) -> str:
    """Gmail search query for a rule; "" marks a rule that cannot be searched."""
    if rule is None or not rule.sender or not rule.sender.strip():
        return ""
    parts = [f"from:{quote_sender(rule.sender.strip())}"]
    if rule.older_than_days:
        parts.append(f"older_than:{rule.older_than_days}d")
    return " ".join(parts)


def parse_from_value(query: str) -> str:
    """Recover the sender from a query built above (quotes stripped, \\" unescaped)."""
    if not query.startswith("from:"):
        return ""
    rest = query[len("from:"):]
    if rest.startswith('"'):
        out = []
        i = 1
        while i < len(rest):
            ch = rest[i]
            if ch == "\\" and i + 1 < len(rest) and rest[i + 1] == '"':
                out.append('"')
                i += 2
                continue
            if ch == '"':
                break
            out.append(ch)
            i += 1
        return "".join(out)
    return rest.split(" ", 1)[0]
