from __future__ import annotations

import logging
import secrets
import string
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from inboxd.errors import InvalidArgument
from inboxd.models import Message, UndoEntry, UndoItem
from inboxd.storage.action_log import parse_timestamp
from inboxd.storage.atomic import atomic_write_json, read_json

logger = logging.getLogger(__name__)

UNDO_ACTIONS = frozenset({"delete", "archive"})
_ID_ALPHABET = string.ascii_lowercase + string.digits
_EPOCH = datetime.fromtimestamp(0, timezone.utc)


def generate_undo_id() -> str:
    rand = "".join(secrets.choice(_ID_ALPHABET) for _ in range(6))
    return f"undo_{int(time.time() * 1000)}_{rand}"


class UndoLog:
    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _read_raw(self) -> List[Dict[str, Any]]:
        data = read_json(self._path, list)
        if not isinstance(data, list):
            return []
        return [entry for entry in data if isinstance(entry, dict) and entry.get("id")]

    def read(self) -> List[UndoEntry]:
        return [UndoEntry.from_dict(raw) for raw in self._read_raw()]

    def record(
        self,
        action: str,
        messages: Sequence[Message],
        *,
        created_at: Optional[datetime] = None,
    ) -> Optional[UndoEntry]:
        """Append one entry snapshotting the messages; None when there is nothing to record."""
        if action not in UNDO_ACTIONS:
            raise InvalidArgument(f'Unsupported undo action "{action}".')
        if not messages:
            return None

        raw = self._read_raw()
        taken = {entry["id"] for entry in raw}
        entry_id = generate_undo_id()
        while entry_id in taken:
            entry_id = generate_undo_id()

        ts = created_at or datetime.now(timezone.utc)
        entry = UndoEntry(
            id=entry_id,
            action=action,
            created_at=ts.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            items=[UndoItem.snapshot(m) for m in messages],
        )
        raw.append(entry.to_dict())
        atomic_write_json(self._path, raw)
        logger.info("Recorded undo entry %s (%s x%d)", entry.id, action, entry.count)
        return entry

    def recent(self, limit: int = 20) -> List[UndoEntry]:
        entries = self.read()
        entries.sort(key=lambda e: parse_timestamp(e.created_at) or _EPOCH, reverse=True)
        return entries[:limit]

    def latest(self) -> Optional[UndoEntry]:
        recent = self.recent(1)
        return recent[0] if recent else None

    def remove(self, entry_id: str) -> bool:
        raw = self._read_raw()
        kept = [entry for entry in raw if entry["id"] != entry_id]
        if len(kept) == len(raw):
            return False
        atomic_write_json(self._path, kept)
        return True

    def replace_items(self, entry_id: str, items: Sequence[UndoItem]) -> Optional[UndoEntry]:
        """Rewrite an entry with fewer items; count follows the new list."""
        raw = self._read_raw()
        for index, entry in enumerate(raw):
            if entry["id"] != entry_id:
                continue
            updated = dict(entry)
            updated["items"] = [item.to_dict() for item in items]
            updated["count"] = len(items)
            raw[index] = updated
            atomic_write_json(self._path, raw)
            return UndoEntry.from_dict(updated)
        return None
