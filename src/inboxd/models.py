from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, NamedTuple, Optional, Tuple


class MessageKey(NamedTuple):
    """Identity of a message across mailboxes; server ids are only unique per account."""

    account: str
    id: str


@dataclass(frozen=True)
class Message:
    id: str
    thread_id: Optional[str]
    account: str
    from_: str = ""
    subject: str = ""
    # RFC 2822 "Date" header as returned by the server.
    date: str = ""
    label_ids: Tuple[str, ...] = ()
    snippet: str = ""

    @property
    def key(self) -> MessageKey:
        return MessageKey(self.account, self.id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "threadId": self.thread_id,
            "account": self.account,
            "from": self.from_,
            "subject": self.subject,
            "date": self.date,
            "labelIds": list(self.label_ids),
            "snippet": self.snippet,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], *, account: Optional[str] = None) -> "Message":
        return cls(
            id=str(data["id"]),
            thread_id=data.get("threadId"),
            account=account or data.get("account") or "default",
            from_=data.get("from") or "",
            subject=data.get("subject") or "",
            date=data.get("date") or "",
            label_ids=tuple(str(x) for x in (data.get("labelIds") or [])),
            snippet=data.get("snippet") or "",
        )


@dataclass(frozen=True)
class MutationResult:
    id: str
    success: bool
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"id": self.id, "success": self.success}
        if self.error:
            out["error"] = self.error
        return out


@dataclass(frozen=True)
class UndoItem:
    id: str
    thread_id: Optional[str]
    account: str
    from_: str = ""
    subject: str = ""

    @property
    def key(self) -> MessageKey:
        return MessageKey(self.account, self.id)

    @classmethod
    def snapshot(cls, message: Message) -> "UndoItem":
        return cls(
            id=message.id,
            thread_id=message.thread_id,
            account=message.account,
            from_=message.from_,
            subject=message.subject,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "threadId": self.thread_id,
            "account": self.account,
            "from": self.from_,
            "subject": self.subject,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UndoItem":
        return cls(
            id=str(data["id"]),
            thread_id=data.get("threadId"),
            account=data.get("account") or "default",
            from_=data.get("from") or "",
            subject=data.get("subject") or "",
        )


@dataclass(frozen=True)
class UndoEntry:
    id: str
    action: str
    created_at: str
    items: List[UndoItem] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.items)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "action": self.action,
            "createdAt": self.created_at,
            "count": self.count,
            "items": [item.to_dict() for item in self.items],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UndoEntry":
        return cls(
            id=str(data["id"]),
            action=str(data.get("action") or ""),
            created_at=str(data.get("createdAt") or ""),
            items=[UndoItem.from_dict(item) for item in (data.get("items") or []) if isinstance(item, dict) and "id" in item],
        )
