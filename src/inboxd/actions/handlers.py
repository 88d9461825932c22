from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import List, Optional, Sequence

from inboxd.gmail.protocol import MailService
from inboxd.models import Message, MutationResult
from inboxd.storage.action_log import ActionLog


class PlanCategory(str, Enum):
    DELETE = "delete"
    ARCHIVE = "archive"
    MARK_READ = "markRead"


class ActionHandler(ABC):
    """One mutation category: how to log it, apply it and (maybe) reverse it."""

    category: PlanCategory
    # Action name recorded in the undo log; None when the category is not reversible.
    undo_action: Optional[str] = None

    def __init__(self, log: Optional[ActionLog] = None) -> None:
        self.log = log

    def pre_log(self, messages: Sequence[Message]) -> None:
        """Record what is about to be attempted."""
        if self.log is not None:
            self.log.append(messages)

    @abstractmethod
    def mutate(self, api: MailService, account: str, ids: Sequence[str]) -> List[MutationResult]:
        """Apply the mutation to one account's messages."""
        ...

    def reverse(self, api: MailService, account: str, ids: Sequence[str]) -> List[MutationResult]:
        raise NotImplementedError(f"{self.category.value} cannot be reversed")


class DeleteHandler(ActionHandler):
    category = PlanCategory.DELETE
    undo_action = "delete"

    def mutate(self, api: MailService, account: str, ids: Sequence[str]) -> List[MutationResult]:
        return api.trash(account, ids)

    def reverse(self, api: MailService, account: str, ids: Sequence[str]) -> List[MutationResult]:
        return api.untrash(account, ids)


class ArchiveHandler(ActionHandler):
    category = PlanCategory.ARCHIVE
    undo_action = "archive"

    def mutate(self, api: MailService, account: str, ids: Sequence[str]) -> List[MutationResult]:
        return api.archive(account, ids)

    def reverse(self, api: MailService, account: str, ids: Sequence[str]) -> List[MutationResult]:
        return api.unarchive(account, ids)


class MarkReadHandler(ActionHandler):
    # No audit log: a manual mark-unread is the only way back.
    category = PlanCategory.MARK_READ

    def mutate(self, api: MailService, account: str, ids: Sequence[str]) -> List[MutationResult]:
        return api.mark_read(account, ids)
