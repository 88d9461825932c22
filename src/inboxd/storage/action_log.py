from __future__ import annotations

import re
from collections import Counter
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from inboxd.gmail.labels import UNREAD_LABEL
from inboxd.models import Message, MessageKey
from inboxd.storage.atomic import atomic_write_json, read_json

_DOMAIN_RE = re.compile(r"@([a-zA-Z0-9.-]+)")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(ts: datetime) -> str:
    return ts.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def extract_domain(from_value: str) -> str:
    match = _DOMAIN_RE.search(from_value or "")
    return match.group(1).lower() if match else "unknown"


class ActionLog:
    """Append-only JSON array of messages an action was attempted on.

    timestamp_field names the per-entry timestamp ("deletedAt", "archivedAt").
    """

    def __init__(self, path: Path, timestamp_field: str, *, keep_labels: bool = False) -> None:
        self._path = Path(path)
        self._timestamp_field = timestamp_field
        self._keep_labels = keep_labels

    @property
    def path(self) -> Path:
        return self._path

    @property
    def timestamp_field(self) -> str:
        return self._timestamp_field

    def read(self) -> List[Dict[str, Any]]:
        data = read_json(self._path, list)
        if not isinstance(data, list):
            return []
        return [entry for entry in data if isinstance(entry, dict)]

    def append(self, messages: Sequence[Message], *, now: Optional[datetime] = None) -> int:
        if not messages:
            return 0
        log = self.read()
        timestamp = _iso(now or _utc_now())
        for message in messages:
            entry: Dict[str, Any] = {
                self._timestamp_field: timestamp,
                "account": message.account,
                "id": message.id,
                "threadId": message.thread_id,
                "from": message.from_,
                "subject": message.subject,
                "snippet": message.snippet,
            }
            if self._keep_labels:
                entry["labelIds"] = list(message.label_ids)
            log.append(entry)
        atomic_write_json(self._path, log)
        return len(messages)

    def remove(self, keys: Iterable[MessageKey]) -> int:
        """Drop entries for the given (account, id) keys; returns how many went."""
        drop = set(keys)
        if not drop:
            return 0
        log = self.read()
        kept = [
            entry
            for entry in log
            if MessageKey(entry.get("account") or "default", str(entry.get("id"))) not in drop
        ]
        removed = len(log) - len(kept)
        if removed:
            atomic_write_json(self._path, kept)
        return removed

    def recent(self, days: int = 30, *, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        cutoff = (now or _utc_now()) - timedelta(days=days)
        out = []
        for entry in self.read():
            ts = parse_timestamp(entry.get(self._timestamp_field))
            if ts is not None and ts >= cutoff:
                out.append(entry)
        return out

    def newest(self, count: int, *, days: int = 30, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        entries = self.recent(days, now=now)
        entries.sort(key=lambda e: parse_timestamp(e.get(self._timestamp_field)), reverse=True)
        return entries[:count]

    def find(self, message_id: str) -> Optional[Dict[str, Any]]:
        # Newest entry wins when the same id was logged more than once.
        for entry in reversed(self.read()):
            if str(entry.get("id")) == message_id:
                return entry
        return None


def deletion_log(path: Path) -> ActionLog:
    return ActionLog(path, "deletedAt", keep_labels=True)


def archive_log(path: Path) -> ActionLog:
    return ActionLog(path, "archivedAt")


def deletion_stats(log: ActionLog, days: int = 30) -> Dict[str, Any]:
    deletions = log.recent(days)
    by_account = Counter(entry.get("account") or "default" for entry in deletions)
    by_domain = Counter(extract_domain(entry.get("from") or "") for entry in deletions)
    return {
        "total": len(deletions),
        "byAccount": dict(by_account),
        "topSenders": [{"domain": d, "count": c} for d, c in by_domain.most_common(10)],
    }


def analyze_patterns(log: ActionLog, days: int = 30, *, unread_label: str = UNREAD_LABEL) -> Dict[str, Any]:
    """Group recent deletions by sender domain to spot cleanup candidates."""
    deletions = log.recent(days)
    counts: Counter = Counter()
    unread: Counter = Counter()
    for entry in deletions:
        domain = extract_domain(entry.get("from") or "")
        counts[domain] += 1
        if unread_label in (entry.get("labelIds") or []):
            unread[domain] += 1

    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    frequent = [
        {"domain": domain, "deletedCount": count, "suggestion": "Consider unsubscribing"}
        for domain, count in ranked
        if count >= 3
    ]
    never_read = [
        {
            "domain": domain,
            "deletedCount": count,
            "suggestion": "You never read these - consider bulk cleanup",
        }
        for domain, count in ranked
        if count >= 2 and unread[domain] == count
    ]
    return {
        "period": days,
        "totalDeleted": len(deletions),
        "frequentDeleters": frequent,
        "neverReadSenders": never_read,
    }
