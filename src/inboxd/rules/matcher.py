from __future__ import annotations

from datetime import datetime, timedelta
from email.utils import parsedate_to_datetime
from typing import Iterable, List, Optional

from inboxd.models import Message
from inboxd.rules.core import Rule


def norm(s: Optional[str]) -> str:
    """Normalize text for matching (None-safe, case-folded)."""
    return (s or "").casefold()


def parse_message_date(value: Optional[str]) -> Optional[datetime]:
    """
    Parse a Date header (RFC 2822), falling back to ISO-8601.
    Returns an aware datetime; naive values are taken as local time.
    """
    if not value or not value.strip():
        return None
    parsed: Optional[datetime]
    try:
        parsed = parsedate_to_datetime(value.strip())
    except (TypeError, ValueError, IndexError):
        parsed = None
    if parsed is None:
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.astimezone()
    return parsed


def is_older_than(date_value: Optional[str], older_than_days: Optional[int], now: Optional[datetime] = None) -> bool:
    if not older_than_days:
        return True
    parsed = parse_message_date(date_value)
    if parsed is None:
        # Unknown age never qualifies.
        return False
    current = (now or datetime.now()).astimezone()
    cutoff = current - timedelta(days=older_than_days)
    return parsed < cutoff


def message_matches_rule(message: Message, rule: Rule, now: Optional[datetime] = None) -> bool:
    if message is None or rule is None or not rule.sender:
        return False
    if norm(rule.sender.strip()) not in norm(message.from_):
        return False
    return is_older_than(message.date, rule.older_than_days, now)


def confirm_matches(messages: Iterable[Message], rule: Rule, now: Optional[datetime] = None) -> List[Message]:
    """Server results that truly satisfy the rule, first occurrence per key, order kept."""
    seen = set()
    confirmed: List[Message] = []
    for message in messages:
        if message.key in seen or not message_matches_rule(message, rule, now):
            continue
        seen.add(message.key)
        confirmed.append(message)
    return confirmed
