"""Command-line interface for inboxd."""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

from google.auth.exceptions import RefreshError
from googleapiclient.errors import HttpError
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.prompt import Confirm
from rich.table import Table

from inboxd.actions.cancel import CancelToken
from inboxd.actions.executor import ApplyResult
from inboxd.actions.undo import UndoResult
from inboxd.app.run import RulesRunner, recent_undo_entries
from inboxd.config.paths import ConfigPaths
from inboxd.config.settings import Settings
from inboxd.errors import Cancelled, InboxdError, InvalidArgument, RemoteError
from inboxd.gmail.accounts import load_accounts, resolve_accounts, resolve_single_account, save_account
from inboxd.gmail.protocol import MailService
from inboxd.gmail.service import GmailMailService, describe_http_error
from inboxd.parsing.durations import parse_older_than
from inboxd.parsing.ids import parse_ids_input
from inboxd.rules.core import RuleAction
from inboxd.rules.suggestions import build_suggested_rules
from inboxd.storage.action_log import analyze_patterns, deletion_log, deletion_stats
from inboxd.storage.rules_store import RuleStore

console = Console(stderr=False)
err_console = Console(stderr=True)
logger = logging.getLogger("inboxd")

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CANCELLED = 130

# Shorter always-delete senders need --force.
MIN_DELETE_SENDER_LENGTH = 3

ServiceFactory = Callable[[ConfigPaths, Settings], MailService]


def setup_logging(level: str) -> None:
    """Configure logging."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_time=False, show_path=False, markup=False)],
        force=True,
    )


def positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value!r}") from None
    if number <= 0:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value!r}")
    return number


def default_service_factory(paths: ConfigPaths, settings: Settings) -> MailService:
    return GmailMailService(paths, max_workers=settings.max_workers, num_retries=settings.api_retries)


def emit_json(data: Any) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


@contextmanager
def sigint_cancels(token: CancelToken) -> Iterator[None]:
    """First Ctrl-C requests cancellation; the pipeline stops at its next check."""

    def handler(signum, frame):
        err_console.print("[yellow]Cancelling after the current step...[/yellow]")
        token.cancel()

    previous = signal.signal(signal.SIGINT, handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def confirm_or_abort(args: argparse.Namespace, question: str) -> bool:
    if args.confirm:
        return True
    if args.json:
        raise InvalidArgument("--json requires --confirm (or --dry-run) because it cannot prompt.")
    return Confirm.ask(question, default=False, console=console)


# --- Rendering ---


def render_plan(result: ApplyResult) -> None:
    plan = result.plan
    table = Table(title="Rules", show_lines=False)
    for col in ("Rule", "Action", "Sender", "Older than", "Matches", "Applied", "Protected"):
        table.add_column(col)
    for s in plan.rule_summaries:
        table.add_row(
            s.rule.id,
            s.rule.action.value,
            escape(s.rule.sender) if s.rule.sender else "[dim](none)[/dim]",
            f"{s.rule.older_than_days}d" if s.rule.older_than_days else "-",
            "skipped" if s.skipped else str(s.matches),
            str(s.applied),
            str(s.protected),
        )
    console.print(table)
    console.print(
        f"Plan: [red]{len(plan.delete)} delete[/red], [cyan]{len(plan.archive)} archive[/cyan], "
        f"[green]{len(plan.mark_read)} mark-read[/green], {len(plan.protected)} protected"
    )
    if plan.skipped_rules:
        console.print(f"[yellow]Skipped rules (no sender): {', '.join(r.id for r in plan.skipped_rules)}[/yellow]")


def render_outcomes(categories: Dict[str, Any]) -> None:
    for name, outcome in categories.items():
        if outcome.error:
            console.print(f"[red]✗ {name}: aborted ({outcome.error})[/red]")
            continue
        console.print(f"[green]✓ {name}: {outcome.succeeded}/{outcome.attempted} succeeded[/green]")
        for account, results in outcome.by_account.items():
            for r in results:
                if not r.success:
                    console.print(f"[red]  - {account}/{r.id}: {escape(r.error or '')}[/red]")
        if outcome.undo_entry_id:
            console.print(f"[dim]  Undo with 'inbox undo' ({outcome.undo_entry_id})[/dim]")


def render_warnings(warnings: Sequence[str]) -> None:
    for warning in warnings:
        console.print(f"[yellow]Warning: {warning}[/yellow]")


def render_undo(result: UndoResult) -> None:
    if result.outcome is None:
        console.print("[yellow]Nothing to undo.[/yellow]")
        render_warnings(result.warnings)
        return
    render_outcomes({result.outcome.category: result.outcome})
    if result.log_pruned:
        console.print(f"[dim]Removed {result.log_pruned} entries from the action log.[/dim]")
    if result.entry is not None and result.remaining is not None:
        console.print(
            f"[yellow]{result.remaining.count} item(s) could not be restored and remain in {result.entry.id}.[/yellow]"
        )
    render_warnings(result.warnings)


# --- Commands ---


def cmd_rules_list(args: argparse.Namespace, ctx: "Context") -> int:
    rules = RuleStore(ctx.paths.rules).list_rules()
    if args.json:
        emit_json({"rules": [r.to_dict() for r in rules], "path": str(ctx.paths.rules)})
        return EXIT_OK
    if not rules:
        console.print("No rules defined.")
        return EXIT_OK
    table = Table(title=f"Rules ({ctx.paths.rules})")
    for col in ("ID", "Action", "Sender", "Older than", "Created"):
        table.add_column(col)
    for r in rules:
        table.add_row(r.id, r.action.value, escape(r.sender), f"{r.older_than_days}d" if r.older_than_days else "-", r.created_at)
    console.print(table)
    return EXIT_OK


def cmd_rules_add(args: argparse.Namespace, ctx: "Context") -> int:
    older_than = None
    if args.older_than is not None:
        older_than = parse_older_than(args.older_than)
        if not older_than:
            raise InvalidArgument(f'Invalid --older-than "{args.older_than}". Use e.g. 30d, 2w or 1m.')
    action = RuleAction.parse(args.action)
    sender = (args.sender or "").strip()
    if action is RuleAction.ALWAYS_DELETE and 0 < len(sender) < MIN_DELETE_SENDER_LENGTH and not args.force:
        raise InvalidArgument(
            f'Sender "{sender}" is very short and could match many messages. Use --force to add it anyway.'
        )
    rule, created = RuleStore(ctx.paths.rules).add_rule(action, sender, older_than)
    if args.json:
        emit_json({"rule": rule.to_dict(), "created": created})
    elif created:
        console.print(f"[green]Added rule {rule.id}[/green] ({rule.action.value} {rule.sender})")
    else:
        console.print(f"[yellow]Rule already exists: {rule.id}[/yellow]")
    return EXIT_OK


def cmd_rules_remove(args: argparse.Namespace, ctx: "Context") -> int:
    removed = RuleStore(ctx.paths.rules).remove_rule(args.id)
    if args.json:
        emit_json({"removed": removed is not None, "rule": removed.to_dict() if removed else None})
        return EXIT_OK
    if removed is None:
        console.print(f"[yellow]No rule with id {args.id}.[/yellow]")
    else:
        console.print(f"[green]Removed rule {removed.id}[/green] ({removed.action.value} {removed.sender})")
    return EXIT_OK


def cmd_rules_suggest(args: argparse.Namespace, ctx: "Context") -> int:
    suggestions = build_suggested_rules(analyze_patterns(deletion_log(ctx.paths.deletion_log), args.days))
    if args.json:
        emit_json(suggestions)
        return EXIT_OK
    if not suggestions["suggestions"]:
        console.print(f"No suggestions from {suggestions['totalDeleted']} deletion(s) in the last {args.days} days.")
        return EXIT_OK
    table = Table(title=f"Suggested rules (last {args.days} days)")
    for col in ("Action", "Sender", "Reason"):
        table.add_column(col)
    for s in suggestions["suggestions"]:
        table.add_row(s["action"], escape(s["sender"]), s["reason"])
    console.print(table)
    console.print("[dim]Add one with: inbox rules add --action <action> --sender <sender>[/dim]")
    return EXIT_OK


def cmd_rules_apply(args: argparse.Namespace, ctx: "Context") -> int:
    if args.json and not (args.confirm or args.dry_run):
        raise InvalidArgument("--json requires --confirm (or --dry-run) because it cannot prompt.")
    accounts = resolve_accounts(args.account, load_accounts(ctx.paths.accounts))

    runner = ctx.runner()
    token = CancelToken()
    warnings: List[str] = []
    with sigint_cancels(token):
        plan = runner.plan(accounts, limit=args.limit, cancel_token=token, warnings=warnings)

        if args.dry_run or plan.is_empty:
            result = runner.apply(plan, accounts, dry_run=True, warnings=warnings)
            if args.json:
                emit_json(result.to_dict())
            else:
                render_plan(result)
                render_warnings(result.warnings)
                if plan.is_empty:
                    console.print("Nothing to do.")
            return EXIT_OK

        if not args.json:
            render_plan(runner.apply(plan, accounts, dry_run=True))
        if not confirm_or_abort(args, "Apply this plan?"):
            console.print("Aborted.")
            return EXIT_OK

        result = runner.apply(plan, accounts, cancel_token=token, warnings=warnings)

    if args.json:
        emit_json(result.to_dict())
    else:
        render_outcomes(result.categories)
        render_warnings(result.warnings)
    return EXIT_OK


def cmd_undo(args: argparse.Namespace, ctx: "Context") -> int:
    if args.list:
        entries = recent_undo_entries(ctx.paths, args.limit)
        if args.json:
            emit_json({"entries": [e.to_dict() for e in entries]})
            return EXIT_OK
        if not entries:
            console.print("No undo entries.")
            return EXIT_OK
        table = Table(title="Recent actions")
        for col in ("ID", "Action", "Count", "Created"):
            table.add_column(col)
        for e in entries:
            table.add_row(e.id, e.action, str(e.count), e.created_at)
        console.print(table)
        return EXIT_OK

    entries = recent_undo_entries(ctx.paths, 1)
    if not entries:
        if args.json:
            emit_json(UndoResult().to_dict())
        else:
            console.print("[yellow]Nothing to undo.[/yellow]")
        return EXIT_OK
    latest = entries[0]
    if not args.json:
        console.print(f"Most recent: {latest.action} of {latest.count} message(s) at {latest.created_at}")
    if not confirm_or_abort(args, f"Undo {latest.action} of {latest.count} message(s)?"):
        console.print("Aborted.")
        return EXIT_OK

    token = CancelToken()
    with sigint_cancels(token):
        result = ctx.runner().undo_last(cancel_token=token)
    if args.json:
        emit_json(result.to_dict())
    else:
        render_undo(result)
    return EXIT_OK


def _restore_command(action: str) -> Callable[[argparse.Namespace, "Context"], int]:
    def run(args: argparse.Namespace, ctx: "Context") -> int:
        ids = parse_ids_input(args.ids) if args.ids else None
        if not ids and not args.last:
            raise InvalidArgument("Specify --ids <ids> or --last <n>.")
        if not confirm_or_abort(args, f"Reverse {action} for the selected message(s)?"):
            console.print("Aborted.")
            return EXIT_OK
        result = ctx.runner().restore(action, ids=ids, last=None if ids else args.last)
        if args.json:
            emit_json(result.to_dict())
        else:
            render_undo(result)
        return EXIT_OK

    return run


def cmd_deletion_log(args: argparse.Namespace, ctx: "Context") -> int:
    log = deletion_log(ctx.paths.deletion_log)
    entries = log.recent(args.days)
    if args.json:
        emit_json({"entries": entries, "stats": deletion_stats(log, args.days), "path": str(log.path)})
        return EXIT_OK
    if not entries:
        console.print(f"No deletions in the last {args.days} days.")
        return EXIT_OK
    table = Table(title=f"Deletions (last {args.days} days)")
    for col in ("Deleted", "Account", "ID", "From", "Subject"):
        table.add_column(col)
    for e in entries:
        table.add_row(
            e.get("deletedAt", ""),
            e.get("account", ""),
            e.get("id", ""),
            escape(e.get("from") or ""),
            escape(e.get("subject") or ""),
        )
    console.print(table)
    return EXIT_OK


def cmd_auth(args: argparse.Namespace, ctx: "Context") -> int:
    account = resolve_single_account(args.account, load_accounts(ctx.paths.accounts))
    service = GmailMailService(ctx.paths.ensure(), interactive=True, num_retries=ctx.settings.api_retries)
    try:
        profile = service.client(account).get_profile()
    except HttpError as exc:
        raise RemoteError(describe_http_error(exc), account=account) from exc
    except (RefreshError, RuntimeError) as exc:
        raise RemoteError(str(exc), account=account) from exc
    saved = save_account(ctx.paths.accounts, account, profile.get("emailAddress"))
    if args.json:
        emit_json({"account": saved.name, "email": saved.email})
    else:
        console.print(f"[green]Authenticated {saved.name}[/green] ({saved.email})")
    return EXIT_OK


def cmd_accounts(args: argparse.Namespace, ctx: "Context") -> int:
    accounts = load_accounts(ctx.paths.accounts)
    if args.json:
        emit_json({"accounts": [{"name": a.name, "email": a.email} for a in accounts]})
        return EXIT_OK
    if not accounts:
        console.print("No accounts configured; commands use the 'default' account.")
    for a in accounts:
        console.print(f"{a.name} ({a.email or 'unknown'})")
    return EXIT_OK


# --- Wiring ---


class Context:
    def __init__(self, paths: ConfigPaths, settings: Settings, service_factory: ServiceFactory) -> None:
        self.paths = paths
        self.settings = settings
        self._service_factory = service_factory
        self._runner: Optional[RulesRunner] = None

    def runner(self) -> RulesRunner:
        if self._runner is None:
            api = self._service_factory(self.paths, self.settings)
            self._runner = RulesRunner(self.paths, api, settings=self.settings)
        return self._runner


def _add_common(p: argparse.ArgumentParser, *, confirm: bool = False) -> None:
    p.add_argument("--json", action="store_true", help="Machine-readable output")
    if confirm:
        p.add_argument("--confirm", action="store_true", help="Skip the confirmation prompt")


def build_parser(settings: Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="inbox", description="Gmail inbox manager with rules and undo")
    parser.add_argument("--config-dir", help="Override the config directory (default: $INBOXD_CONFIG_DIR)")
    parser.add_argument("--log-level", default=settings.log_level, help="Logging level (default: %(default)s)")
    sub = parser.add_subparsers(dest="command", required=True)

    auth = sub.add_parser("auth", help="Authenticate a Gmail account")
    auth.add_argument("-a", "--account", help="Account name (required when several accounts are configured)")
    _add_common(auth)
    auth.set_defaults(func=cmd_auth)

    accounts = sub.add_parser("accounts", help="List configured accounts")
    _add_common(accounts)
    accounts.set_defaults(func=cmd_accounts)

    rules = sub.add_parser("rules", help="Manage automation rules")
    rules_sub = rules.add_subparsers(dest="rules_command", required=True)

    r_list = rules_sub.add_parser("list", help="List rules")
    _add_common(r_list)
    r_list.set_defaults(func=cmd_rules_list)

    r_add = rules_sub.add_parser("add", help="Add a rule")
    r_add.add_argument("--action", required=True, choices=[a.value for a in RuleAction])
    r_add.add_argument("--sender", required=True, help="Sender address or domain fragment")
    r_add.add_argument("--older-than", help="Only messages older than e.g. 30d, 2w, 1m")
    r_add.add_argument("--force", action="store_true", help="Allow very short always-delete senders")
    _add_common(r_add)
    r_add.set_defaults(func=cmd_rules_add)

    r_remove = rules_sub.add_parser("remove", help="Remove a rule by id")
    r_remove.add_argument("id")
    _add_common(r_remove)
    r_remove.set_defaults(func=cmd_rules_remove)

    r_suggest = rules_sub.add_parser("suggest", help="Suggest rules from the deletion log")
    r_suggest.add_argument("--days", type=positive_int, default=30)
    _add_common(r_suggest)
    r_suggest.set_defaults(func=cmd_rules_suggest)

    r_apply = rules_sub.add_parser("apply", help="Apply rules to the inbox")
    r_apply.add_argument("-a", "--account", default="all", help='Account name or "all" (default: all)')
    r_apply.add_argument(
        "--limit",
        type=positive_int,
        default=settings.default_limit,
        help="Max results per rule per account (default: %(default)s)",
    )
    r_apply.add_argument("--dry-run", action="store_true", help="Show the plan without changing anything")
    _add_common(r_apply, confirm=True)
    r_apply.set_defaults(func=cmd_rules_apply)

    undo = sub.add_parser("undo", help="Undo the most recent delete or archive")
    undo.add_argument("--list", action="store_true", help="List recent undoable actions")
    undo.add_argument("--limit", type=positive_int, default=20, help="Entries to list (default: %(default)s)")
    _add_common(undo, confirm=True)
    undo.set_defaults(func=cmd_undo)

    for name, action, help_text in (
        ("restore", "delete", "Restore deleted messages from trash"),
        ("unarchive", "archive", "Move archived messages back to the inbox"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--ids", help="Message ids (comma/space separated or JSON)")
        p.add_argument("--last", type=positive_int, help="The N most recent log entries")
        _add_common(p, confirm=True)
        p.set_defaults(func=_restore_command(action))

    d_log = sub.add_parser("deletion-log", help="Show recent deletions")
    d_log.add_argument("--days", type=positive_int, default=30)
    _add_common(d_log)
    d_log.set_defaults(func=cmd_deletion_log)

    return parser


def main(argv: Optional[List[str]] = None, *, service_factory: ServiceFactory = default_service_factory) -> int:
    try:
        settings = Settings.from_env()
    except InvalidArgument as exc:
        err_console.print(f"[red]Error:[/red] {exc}")
        return EXIT_ERROR

    parser = build_parser(settings)
    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    paths = ConfigPaths.from_env() if not args.config_dir else ConfigPaths.from_dir(args.config_dir)
    ctx = Context(paths, settings, service_factory)
    logger.debug("Using config directory %s", paths.config_dir)
    as_json = getattr(args, "json", False)

    try:
        return args.func(args, ctx)
    except Cancelled as exc:
        partial = exc.result
        if as_json:
            payload: Dict[str, Any] = {"error": str(exc)}
            if partial is not None:
                payload["partial"] = partial.to_dict()
            emit_json(payload)
        else:
            err_console.print(f"[yellow]{exc}[/yellow]")
            if isinstance(partial, ApplyResult):
                render_outcomes(partial.categories)
                render_warnings(partial.warnings)
            elif isinstance(partial, UndoResult):
                render_undo(partial)
        return EXIT_CANCELLED
    except InboxdError as exc:
        if as_json:
            emit_json({"error": str(exc)})
        else:
            err_console.print(f"[red]Error:[/red] {exc}")
        return EXIT_ERROR


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
