from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from inboxd.errors import InvalidArgument


class RuleAction(str, Enum):
    ALWAYS_DELETE = "always-delete"
    NEVER_DELETE = "never-delete"
    AUTO_ARCHIVE = "auto-archive"
    AUTO_MARK_READ = "auto-mark-read"

    @classmethod
    def parse(cls, value: Any) -> "RuleAction":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            supported = ", ".join(a.value for a in cls)
            raise InvalidArgument(f'Unsupported action "{value}". Expected one of: {supported}') from None


def normalize_older_than_days(value: Any) -> Optional[int]:
    """Positive whole days, or None for anything absent, non-positive or unparseable."""
    if value is None or isinstance(value, bool):
        return None
    try:
        days = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return None
    return days if days > 0 else None


@dataclass(frozen=True)
class Rule:
    id: str
    action: RuleAction
    sender: str
    older_than_days: Optional[int] = None
    created_at: str = ""

    @property
    def identity(self) -> Tuple[str, str, Optional[int]]:
        # Two rules with the same identity are the same rule for dedup on insert.
        return (self.action.value, self.sender.casefold(), self.older_than_days)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "action": self.action.value,
            "sender": self.sender,
            "olderThanDays": self.older_than_days,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Rule":
        """Raises InvalidArgument when the record cannot be executed safely."""
        if not isinstance(data, dict) or not data.get("id"):
            raise InvalidArgument("Rule record is missing an id")
        return cls(
            id=str(data["id"]),
            action=RuleAction.parse(data.get("action")),
            sender=str(data.get("sender") or "").strip(),
            older_than_days=normalize_older_than_days(data.get("olderThanDays")),
            created_at=str(data.get("createdAt") or ""),
        )
