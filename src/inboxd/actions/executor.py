from __future__ import annotations

import logging
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Sequence

from inboxd.actions.cancel import CancelToken
from inboxd.actions.handlers import (
    ActionHandler,
    ArchiveHandler,
    DeleteHandler,
    MarkReadHandler,
    PlanCategory,
)
from inboxd.config.paths import ConfigPaths
from inboxd.errors import Cancelled, RemoteError, StorageError
from inboxd.gmail.protocol import MailService
from inboxd.models import Message, MessageKey, MutationResult
from inboxd.pipeline.planner import ActionPlan
from inboxd.storage.action_log import archive_log, deletion_log
from inboxd.storage.undo_log import UndoLog

logger = logging.getLogger(__name__)

Mutation = Callable[[str, Sequence[str]], List[MutationResult]]


@dataclass
class CategoryOutcome:
    category: str
    attempted: int = 0
    # account -> per-id results, request order.
    by_account: Dict[str, List[MutationResult]] = field(default_factory=dict)
    undo_entry_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def results(self) -> List[MutationResult]:
        return [r for results in self.by_account.values() for r in results]

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success)

    def successful_keys(self) -> set:
        return {
            MessageKey(account, r.id)
            for account, results in self.by_account.items()
            for r in results
            if r.success
        }

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "accounts": {
                account: [r.to_dict() for r in results] for account, results in self.by_account.items()
            },
        }
        if self.undo_entry_id:
            out["undoId"] = self.undo_entry_id
        if self.error:
            out["error"] = self.error
        return out


@dataclass
class ApplyResult:
    plan: ActionPlan
    dry_run: bool = False
    categories: Dict[str, CategoryOutcome] = field(default_factory=OrderedDict)
    warnings: List[str] = field(default_factory=list)
    cancelled: bool = False
    # Accounts the run was limited to; None means every account in the plan.
    accounts: Optional[FrozenSet[str]] = None

    def in_scope(self, messages: Sequence[Message]) -> List[Message]:
        if self.accounts is None:
            return list(messages)
        return [m for m in messages if m.account in self.accounts]

    @property
    def failures(self) -> int:
        return sum(c.failed for c in self.categories.values())

    def to_dict(self) -> Dict[str, Any]:
        protected = [k for k in self.plan.protected if self.accounts is None or k.account in self.accounts]
        totals = {
            PlanCategory.DELETE.value: len(self.in_scope(self.plan.delete)),
            PlanCategory.ARCHIVE.value: len(self.in_scope(self.plan.archive)),
            PlanCategory.MARK_READ.value: len(self.in_scope(self.plan.mark_read)),
            "protected": len(protected),
        }
        out: Dict[str, Any] = {
            "dryRun": self.dry_run,
            "totals": totals,
            "rules": [s.to_dict() for s in self.plan.rule_summaries],
            "skipped": [r.id for r in self.plan.skipped_rules],
            "results": {name: outcome.to_dict() for name, outcome in self.categories.items()},
            "warnings": list(self.warnings),
        }
        if self.dry_run:
            out["plan"] = self.plan.to_dict()
        if self.cancelled:
            out["cancelled"] = True
        return out


def group_by_account(items: Iterable[Any]) -> "OrderedDict[str, List[Any]]":
    grouped: "OrderedDict[str, List[Any]]" = OrderedDict()
    for item in items:
        grouped.setdefault(item.account, []).append(item)
    return grouped


def run_per_account(
    mutation: Mutation,
    ids_by_account: "OrderedDict[str, List[str]]",
    *,
    max_workers: int,
) -> Dict[str, List[MutationResult]]:
    """Call mutation once per account on a bounded pool; every requested id gets a result."""

    def call(account: str) -> List[MutationResult]:
        ids = ids_by_account[account]
        try:
            results = list(mutation(account, ids))
        except RemoteError as exc:
            logger.error("Mutation failed for account %s: %s", account, exc.reason)
            return [MutationResult(id=mid, success=False, error=exc.reason) for mid in ids]
        except Exception as exc:
            # Every requested id still gets a result.
            logger.exception("Unexpected error mutating account %s", account)
            error = str(exc) or type(exc).__name__
            return [MutationResult(id=mid, success=False, error=error) for mid in ids]
        reported = {r.id for r in results}
        results.extend(
            MutationResult(id=mid, success=False, error="No result reported")
            for mid in ids
            if mid not in reported
        )
        return results

    if not ids_by_account:
        return {}
    workers = max(1, min(max_workers, len(ids_by_account)))
    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = pool.map(call, list(ids_by_account))
        return dict(zip(ids_by_account, results))


@dataclass
class ActionExecutor:
    handlers: Dict[PlanCategory, ActionHandler]
    undo_log: UndoLog
    max_workers: int = 4

    def apply(
        self,
        plan: ActionPlan,
        accounts: Sequence[str],
        api: MailService,
        *,
        dry_run: bool = False,
        cancel_token: Optional[CancelToken] = None,
    ) -> ApplyResult:
        result = ApplyResult(plan=plan, dry_run=dry_run, accounts=frozenset(accounts))
        if dry_run:
            logger.info("Dry run: %d delete, %d archive, %d mark-read", len(plan.delete), len(plan.archive), len(plan.mark_read))
            return result

        token = cancel_token or CancelToken()
        buckets = (
            (PlanCategory.DELETE, plan.delete),
            (PlanCategory.ARCHIVE, plan.archive),
            (PlanCategory.MARK_READ, plan.mark_read),
        )
        for category, bucket in buckets:
            messages = result.in_scope(bucket)
            if not messages:
                continue
            handler = self.handlers.get(category)
            if handler is None:
                logger.warning("No handler registered for %s", category.value)
                continue
            self._apply_category(handler, messages, api, token, result)
        return result

    def _apply_category(
        self,
        handler: ActionHandler,
        messages: List[Message],
        api: MailService,
        token: CancelToken,
        result: ApplyResult,
    ) -> None:
        name = handler.category.value
        outcome = CategoryOutcome(category=name, attempted=len(messages))

        if token.cancelled:
            result.cancelled = True
            raise Cancelled(f"Cancelled before {name}", result=result)

        result.categories[name] = outcome
        try:
            handler.pre_log(messages)
        except StorageError as exc:
            # Nothing was mutated for this category.
            outcome.error = str(exc)
            logger.error("Aborting %s: %s", name, exc)
            return

        if token.cancelled:
            result.cancelled = True
            result.warnings.append(f"Cancelled after logging {len(messages)} {name} candidate(s); nothing was changed.")
            raise Cancelled(f"Cancelled before {name}", result=result)

        ids_by_account: "OrderedDict[str, List[str]]" = OrderedDict(
            (account, [m.id for m in items]) for account, items in group_by_account(messages).items()
        )
        outcome.by_account = run_per_account(
            lambda account, ids: handler.mutate(api, account, ids),
            ids_by_account,
            max_workers=self.max_workers,
        )
        ok = outcome.successful_keys()
        succeeded = [m for m in messages if m.key in ok]
        logger.info("%s: %d succeeded, %d failed", name, outcome.succeeded, outcome.failed)

        if handler.undo_action is None or not succeeded:
            if token.cancelled:
                result.cancelled = True
                raise Cancelled(f"Cancelled after {name}", result=result)
            return

        if token.cancelled:
            result.cancelled = True
            result.warnings.append(
                f"Cancelled after {name} of {len(succeeded)} message(s) but before the undo record was "
                "written; these changes cannot be undone with 'inbox undo'."
            )
            raise Cancelled(f"Cancelled after {name}", result=result)

        try:
            entry = self.undo_log.record(handler.undo_action, succeeded)
        except StorageError as exc:
            result.warnings.append(
                f"{name} succeeded for {len(succeeded)} message(s) but the undo log could not be written "
                f"({exc}). Reconcile directly in Gmail if needed."
            )
            logger.error("Undo log write failed after %s: %s", name, exc)
            return
        outcome.undo_entry_id = entry.id if entry else None


def default_executor(paths: ConfigPaths, *, max_workers: int = 4) -> ActionExecutor:
    return ActionExecutor(
        handlers={
            PlanCategory.DELETE: DeleteHandler(deletion_log(paths.deletion_log)),
            PlanCategory.ARCHIVE: ArchiveHandler(archive_log(paths.archive_log)),
            PlanCategory.MARK_READ: MarkReadHandler(),
        },
        undo_log=UndoLog(paths.undo_log),
        max_workers=max_workers,
    )
