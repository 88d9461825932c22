from __future__ import annotations

from typing import List, Protocol, Sequence

from inboxd.models import Message, MutationResult


class MailService(Protocol):
    """Remote mailbox operations the rule engine depends on.

    Every mutation reports one MutationResult per requested id, in request
    order, and never raises for a single failing message.
    """

    unread_label: str

    def search(self, account: str, query: str, max_results: int) -> List[Message]: ...

    def trash(self, account: str, ids: Sequence[str]) -> List[MutationResult]: ...

    def untrash(self, account: str, ids: Sequence[str]) -> List[MutationResult]: ...

    def archive(self, account: str, ids: Sequence[str]) -> List[MutationResult]: ...

    def unarchive(self, account: str, ids: Sequence[str]) -> List[MutationResult]: ...

    def mark_read(self, account: str, ids: Sequence[str]) -> List[MutationResult]: ...
