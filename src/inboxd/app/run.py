# src/inboxd/app/run.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from inboxd.actions.cancel import CancelToken
from inboxd.actions.executor import ActionExecutor, ApplyResult, default_executor
from inboxd.actions.undo import UndoResult, restore_logged, undo_last
from inboxd.config.paths import ConfigPaths
from inboxd.config.settings import Settings
from inboxd.errors import InvalidArgument
from inboxd.gmail.protocol import MailService
from inboxd.models import UndoEntry
from inboxd.pipeline.orchestrator import collect_rule_matches
from inboxd.pipeline.planner import ActionPlan, build_action_plan
from inboxd.storage.rules_store import RuleStore
from inboxd.storage.undo_log import UndoLog

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, Dict[str, Any]], None]


class RulesRunner:
    """Plan and apply the stored rules against one or more mailboxes.

    The config paths and the mail service are injected so tests can run the
    whole pipeline against a temporary directory and a fake service.
    """

    def __init__(
        self,
        paths: ConfigPaths,
        api: MailService,
        *,
        settings: Optional[Settings] = None,
        executor: Optional[ActionExecutor] = None,
        progress_cb: Optional[ProgressCallback] = None,
    ) -> None:
        self.paths = paths
        self.api = api
        self.settings = settings or Settings()
        self.executor = executor or default_executor(paths, max_workers=self.settings.max_workers)
        self.store = RuleStore(paths.rules)
        self._progress_cb = progress_cb

    def report(self, step: str, *, detail: Optional[str] = None, **extra: Any) -> None:
        if not self._progress_cb:
            return
        payload: Dict[str, Any] = {"detail": detail}
        payload.update(extra)
        self._progress_cb(step, payload)

    def plan(
        self,
        accounts: Sequence[str],
        *,
        limit: int,
        now: Optional[datetime] = None,
        cancel_token: Optional[CancelToken] = None,
        warnings: Optional[List[str]] = None,
    ) -> ActionPlan:
        if limit <= 0:
            raise InvalidArgument(f"--limit must be a positive integer, got {limit}")
        if not accounts:
            raise InvalidArgument("No accounts to run against.")

        self.report("load_rules", detail="Loading rules")
        rules = self.store.list_rules()
        if not rules:
            raise InvalidArgument(f"No rules defined. Add one with 'inbox rules add' ({self.store.path}).")

        self.report("search", detail=f"Searching {len(rules)} rule(s) across {len(accounts)} account(s)")
        rule_matches = collect_rule_matches(
            rules,
            accounts,
            self.api,
            limit=limit,
            now=now,
            cancel_token=cancel_token,
            warn=warnings.append if warnings is not None else None,
        )
        plan = build_action_plan(rule_matches, unread_label=self.api.unread_label)
        self.report(
            "planned",
            detail="Plan ready",
            metrics={
                "delete": len(plan.delete),
                "archive": len(plan.archive),
                "markRead": len(plan.mark_read),
                "protected": len(plan.protected),
            },
        )
        return plan

    def apply(
        self,
        plan: ActionPlan,
        accounts: Sequence[str],
        *,
        dry_run: bool = False,
        cancel_token: Optional[CancelToken] = None,
        warnings: Sequence[str] = (),
    ) -> ApplyResult:
        self.report("apply", detail="Dry run" if dry_run else "Applying plan")
        result = self.executor.apply(plan, accounts, self.api, dry_run=dry_run, cancel_token=cancel_token)
        # Search warnings come first; they happened first.
        result.warnings[:0] = list(warnings)
        self.report("done", detail="Run completed", metrics=result.to_dict()["totals"])
        return result

    def run(
        self,
        accounts: Sequence[str],
        *,
        limit: int,
        dry_run: bool = False,
        now: Optional[datetime] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> ApplyResult:
        """Plan and apply in one go (no confirmation step)."""
        warnings: List[str] = []
        plan = self.plan(accounts, limit=limit, now=now, cancel_token=cancel_token, warnings=warnings)
        return self.apply(plan, accounts, dry_run=dry_run, cancel_token=cancel_token, warnings=warnings)

    def undo_last(self, *, cancel_token: Optional[CancelToken] = None) -> UndoResult:
        self.report("undo", detail="Undoing most recent action")
        return undo_last(self.executor, self.api, cancel_token=cancel_token)

    def restore(self, action: str, *, ids: Optional[Sequence[str]] = None, last: Optional[int] = None) -> UndoResult:
        self.report("restore", detail=f"Restoring {action} log entries")
        return restore_logged(action, self.executor, self.api, ids=ids, last=last)


def recent_undo_entries(paths: ConfigPaths, limit: int = 20) -> List[UndoEntry]:
    return UndoLog(paths.undo_log).recent(limit)
