from __future__ import annotations

from dataclasses import replace
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

from inboxd.errors import RemoteError
from inboxd.gmail.labels import TRASH_LABEL
from inboxd.models import Message, MutationResult
from inboxd.rules.query import parse_from_value


def make_message(
    message_id: str,
    sender: str,
    *,
    account: str = "default",
    date: str = "Mon, 01 Jan 2024 10:00:00 +0000",
    labels: Sequence[str] = ("INBOX", "UNREAD"),
    subject: str = "",
) -> Message:
    return Message(
        id=message_id,
        thread_id=f"t-{message_id}",
        account=account,
        from_=sender,
        subject=subject or f"Subject {message_id}",
        date=date,
        label_ids=tuple(labels),
        snippet="",
    )


class FakeMailService:
    """In-memory mailboxes keyed by account; search matches on the from: term only."""

    unread_label = "UNREAD"

    def __init__(self, messages: Sequence[Message] = ()) -> None:
        self.labels: Dict[Tuple[str, str], Set[str]] = {}
        self.messages: Dict[Tuple[str, str], Message] = {}
        for m in messages:
            self.messages[(m.account, m.id)] = m
            self.labels[(m.account, m.id)] = set(m.label_ids)
        self.calls: List[Tuple[str, str, Tuple[str, ...]]] = []
        self.failing_ids: Set[str] = set()
        self.failing_search_accounts: Set[str] = set()
        self.after_call: Optional[Callable[[str], None]] = None

    def search(self, account: str, query: str, max_results: int) -> List[Message]:
        self.calls.append(("search", account, (query,)))
        if account in self.failing_search_accounts:
            raise RemoteError("Not authorized (401); re-run 'inbox auth'", account=account)
        sender = parse_from_value(query).casefold()
        found = [
            replace(m, label_ids=tuple(sorted(self.labels[key])))
            for key, m in self.messages.items()
            if key[0] == account and sender in m.from_.casefold() and TRASH_LABEL not in self.labels[key]
        ]
        return found[:max_results]

    def _mutate(self, op: str, account: str, ids: Sequence[str], add: Set[str], remove: Set[str]) -> List[MutationResult]:
        self.calls.append((op, account, tuple(ids)))
        results = []
        for mid in ids:
            key = (account, mid)
            if mid in self.failing_ids or key not in self.labels:
                results.append(MutationResult(id=mid, success=False, error="Message not found"))
                continue
            self.labels[key] = (self.labels[key] - remove) | add
            results.append(MutationResult(id=mid, success=True))
        if self.after_call:
            self.after_call(op)
        return results

    def trash(self, account: str, ids: Sequence[str]) -> List[MutationResult]:
        return self._mutate("trash", account, ids, {TRASH_LABEL}, {"INBOX"})

    def untrash(self, account: str, ids: Sequence[str]) -> List[MutationResult]:
        return self._mutate("untrash", account, ids, {"INBOX"}, {TRASH_LABEL})

    def archive(self, account: str, ids: Sequence[str]) -> List[MutationResult]:
        return self._mutate("archive", account, ids, set(), {"INBOX"})

    def unarchive(self, account: str, ids: Sequence[str]) -> List[MutationResult]:
        return self._mutate("unarchive", account, ids, {"INBOX"}, set())

    def mark_read(self, account: str, ids: Sequence[str]) -> List[MutationResult]:
        return self._mutate("mark_read", account, ids, set(), {self.unread_label})

    def ops(self, name: str) -> List[Tuple[str, Tuple[str, ...]]]:
        return [(account, ids) for op, account, ids in self.calls if op == name]
