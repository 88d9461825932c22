"""Reverse recorded deletions and archives.

An undo entry moves open -> partially-reversed -> closed: a partial reversal
rewrites the entry with only the items that are still applied, a full one
removes it. The matching action-log entries are pruned for every reversed
message.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from inboxd.actions.cancel import CancelToken
from inboxd.actions.executor import ActionExecutor, CategoryOutcome, group_by_account, run_per_account
from inboxd.actions.handlers import ActionHandler
from inboxd.errors import Cancelled, InvalidArgument, StorageError
from inboxd.gmail.protocol import MailService
from inboxd.models import UndoEntry, UndoItem

logger = logging.getLogger(__name__)


@dataclass
class UndoResult:
    entry: Optional[UndoEntry] = None
    outcome: Optional[CategoryOutcome] = None
    # Entry after the run; None when it was closed (or there was nothing to undo).
    remaining: Optional[UndoEntry] = None
    log_pruned: int = 0
    warnings: List[str] = field(default_factory=list)

    @property
    def reversed_keys(self) -> set:
        return self.outcome.successful_keys() if self.outcome else set()

    def to_dict(self) -> Dict[str, Any]:
        if self.entry is None and self.outcome is None:
            return {"undone": False, "reason": "Nothing to undo", "warnings": list(self.warnings)}
        out: Dict[str, Any] = {
            "undone": bool(self.reversed_keys),
            "totals": {self.outcome.category: self.outcome.attempted} if self.outcome else {},
            "results": {self.outcome.category: self.outcome.to_dict()} if self.outcome else {},
            "logPruned": self.log_pruned,
            "warnings": list(self.warnings),
        }
        if self.entry is not None:
            out["undoId"] = self.entry.id
            out["action"] = self.entry.action
            out["remaining"] = self.remaining.count if self.remaining else 0
        return out


def _handler_for(executor: ActionExecutor, action: str) -> ActionHandler:
    for handler in executor.handlers.values():
        if handler.undo_action == action:
            return handler
    raise InvalidArgument(f'Cannot undo action "{action}".')


def reverse_items(
    handler: ActionHandler,
    items: Sequence[Any],
    api: MailService,
    *,
    max_workers: int,
) -> CategoryOutcome:
    """Run the inverse mutation for items carrying .account and .id."""
    outcome = CategoryOutcome(category=handler.category.value, attempted=len(items))
    ids_by_account: "OrderedDict[str, List[str]]" = OrderedDict(
        (account, [item.id for item in group]) for account, group in group_by_account(items).items()
    )
    outcome.by_account = run_per_account(
        lambda account, ids: handler.reverse(api, account, ids),
        ids_by_account,
        max_workers=max_workers,
    )
    return outcome


def _prune_log(handler: ActionHandler, keys: set, result_warnings: List[str]) -> int:
    if handler.log is None or not keys:
        return 0
    try:
        return handler.log.remove(keys)
    except StorageError as exc:
        result_warnings.append(f"Restored messages are still listed in {handler.log.path.name}: {exc}")
        logger.error("Could not prune %s: %s", handler.log.path, exc)
        return 0


def undo_entry(
    entry: UndoEntry,
    executor: ActionExecutor,
    api: MailService,
    *,
    cancel_token: Optional[CancelToken] = None,
) -> UndoResult:
    token = cancel_token or CancelToken()
    handler = _handler_for(executor, entry.action)
    result = UndoResult(entry=entry, remaining=entry)

    token.raise_if_cancelled(result)
    result.outcome = reverse_items(handler, entry.items, api, max_workers=executor.max_workers)
    reversed_keys = result.outcome.successful_keys()
    logger.info("Undo %s: %d reversed, %d failed", entry.id, result.outcome.succeeded, result.outcome.failed)

    if not reversed_keys:
        return result

    if token.cancelled:
        result.warnings.append(
            f"Cancelled after restoring {len(reversed_keys)} message(s); undo entry {entry.id} was not updated."
        )
        raise Cancelled("Cancelled during undo", result=result)

    result.log_pruned = _prune_log(handler, reversed_keys, result.warnings)

    left: List[UndoItem] = [item for item in entry.items if item.key not in reversed_keys]
    try:
        if left:
            result.remaining = executor.undo_log.replace_items(entry.id, left)
        else:
            executor.undo_log.remove(entry.id)
            result.remaining = None
    except StorageError as exc:
        result.warnings.append(
            f"Messages were restored but undo entry {entry.id} could not be updated ({exc}); "
            "running undo again will retry them harmlessly."
        )
        logger.error("Could not update undo entry %s: %s", entry.id, exc)
    return result


def undo_last(
    executor: ActionExecutor,
    api: MailService,
    *,
    cancel_token: Optional[CancelToken] = None,
) -> UndoResult:
    entry = executor.undo_log.latest()
    if entry is None:
        return UndoResult()
    return undo_entry(entry, executor, api, cancel_token=cancel_token)


@dataclass(frozen=True)
class LoggedMessage:
    account: str
    id: str


def restore_logged(
    action: str,
    executor: ActionExecutor,
    api: MailService,
    *,
    ids: Optional[Sequence[str]] = None,
    last: Optional[int] = None,
    days: int = 30,
) -> UndoResult:
    """Reverse messages picked from an action log by id or recency.

    Undo entries that cover a reversed message shrink the same way a regular
    undo would, so a later 'inbox undo' does not replay it.
    """
    handler = _handler_for(executor, action)
    if handler.log is None:
        raise InvalidArgument(f'"{action}" has no action log to restore from.')
    if bool(ids) == bool(last):
        raise InvalidArgument("Specify either ids or a count of recent entries.")

    result = UndoResult()
    if ids:
        picked: List[LoggedMessage] = []
        for message_id in ids:
            logged = handler.log.find(message_id)
            if logged is None:
                result.warnings.append(
                    f"ID {message_id} not found in {handler.log.path.name}; restore it from Gmail directly."
                )
                continue
            picked.append(LoggedMessage(account=logged.get("account") or "default", id=message_id))
    else:
        if last is None or last <= 0:
            raise InvalidArgument("The number of entries to restore must be positive.")
        picked = [
            LoggedMessage(account=e.get("account") or "default", id=str(e.get("id")))
            for e in handler.log.newest(last, days=days)
        ]

    if not picked:
        return result

    result.outcome = reverse_items(handler, picked, api, max_workers=executor.max_workers)
    reversed_keys = result.outcome.successful_keys()
    result.log_pruned = _prune_log(handler, reversed_keys, result.warnings)
    _discard_from_undo_log(executor, action, reversed_keys, result.warnings)
    return result


def _discard_from_undo_log(executor: ActionExecutor, action: str, keys: set, warnings: List[str]) -> None:
    if not keys:
        return
    try:
        for entry in executor.undo_log.read():
            if entry.action != action:
                continue
            left = [item for item in entry.items if item.key not in keys]
            if len(left) == entry.count:
                continue
            if left:
                executor.undo_log.replace_items(entry.id, left)
            else:
                executor.undo_log.remove(entry.id)
    except StorageError as exc:
        warnings.append(f"Undo log still lists restored messages: {exc}")
        logger.error("Could not update undo log: %s", exc)

