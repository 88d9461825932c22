from __future__ import annotations

from pathlib import Path

import pytest

from fakes import FakeMailService, make_message
from inboxd.actions.cancel import CancelToken
from inboxd.actions.executor import ActionExecutor, default_executor
from inboxd.actions.handlers import DeleteHandler, PlanCategory
from inboxd.config.paths import ConfigPaths
from inboxd.errors import Cancelled
from inboxd.pipeline.planner import RuleMatches, build_action_plan
from inboxd.rules.core import Rule, RuleAction
from inboxd.storage.action_log import archive_log, deletion_log
from inboxd.storage.undo_log import UndoLog


def _plan(**by_action):
    actions = {
        "delete": RuleAction.ALWAYS_DELETE,
        "archive": RuleAction.AUTO_ARCHIVE,
        "mark_read": RuleAction.AUTO_MARK_READ,
    }
    return build_action_plan(
        [
            RuleMatches(Rule(id=f"r-{name}", action=actions[name], sender="x.com"), tuple(messages))
            for name, messages in by_action.items()
        ]
    )


def test_dry_run_writes_nothing(tmp_path: Path) -> None:
    paths = ConfigPaths.from_dir(tmp_path)
    api = FakeMailService([make_message("m1", "a@x.com")])

    result = default_executor(paths).apply(_plan(delete=[make_message("m1", "a@x.com")]), ["default"], api, dry_run=True)

    assert result.dry_run is True
    assert result.to_dict()["plan"]["delete"][0]["id"] == "m1"
    assert api.calls == []
    assert list(tmp_path.iterdir()) == []


def test_partial_success_records_only_successful_items(tmp_path: Path) -> None:
    paths = ConfigPaths.from_dir(tmp_path)
    messages = [make_message(mid, "a@x.com") for mid in ("m1", "m2", "m3")]
    api = FakeMailService(messages)
    api.failing_ids.add("m3")

    result = default_executor(paths).apply(_plan(delete=messages), ["default"], api)

    outcome = result.categories["delete"]
    assert (outcome.succeeded, outcome.failed) == (2, 1)
    (entry,) = UndoLog(paths.undo_log).read()
    assert entry.action == "delete"
    assert [item.id for item in entry.items] == ["m1", "m2"]
    assert outcome.undo_entry_id == entry.id
    # Pre-log covers every candidate, not just the successes.
    assert [e["id"] for e in deletion_log(paths.deletion_log).read()] == ["m1", "m2", "m3"]
    assert result.to_dict()["results"]["delete"]["accounts"]["default"][2] == {
        "id": "m3",
        "success": False,
        "error": "Message not found",
    }


def test_categories_group_by_account_and_mark_read_has_no_log_or_undo(tmp_path: Path) -> None:
    paths = ConfigPaths.from_dir(tmp_path)
    d1 = make_message("d1", "a@x.com", account="home")
    d2 = make_message("d2", "a@x.com", account="work")
    a1 = make_message("a1", "b@x.com", account="home")
    r1 = make_message("r1", "c@x.com", account="work")
    api = FakeMailService([d1, d2, a1, r1])

    result = default_executor(paths).apply(
        _plan(delete=[d1, d2], archive=[a1], mark_read=[r1]), ["home", "work"], api
    )

    assert sorted(api.ops("trash")) == [("home", ("d1",)), ("work", ("d2",))]
    assert api.ops("archive") == [("home", ("a1",))]
    assert api.ops("mark_read") == [("work", ("r1",))]
    assert list(result.categories) == ["delete", "archive", "markRead"]
    assert sorted(e.action for e in UndoLog(paths.undo_log).read()) == ["archive", "delete"]
    assert result.categories["markRead"].undo_entry_id is None
    assert [e["id"] for e in archive_log(paths.archive_log).read()] == ["a1"]


def test_messages_outside_selected_accounts_are_ignored(tmp_path: Path) -> None:
    paths = ConfigPaths.from_dir(tmp_path)
    m = make_message("m1", "a@x.com", account="other")
    api = FakeMailService([m])

    result = default_executor(paths).apply(_plan(delete=[m]), ["default"], api)

    assert api.calls == []
    assert result.categories == {}


def test_applied_keys_equal_undo_items_plus_failures(tmp_path: Path) -> None:
    paths = ConfigPaths.from_dir(tmp_path)
    deletes = [make_message(f"d{i}", "a@x.com") for i in range(4)]
    archives = [make_message(f"a{i}", "b@x.com") for i in range(3)]
    api = FakeMailService(deletes + archives)
    api.failing_ids.update({"d1", "a2"})
    plan = _plan(delete=deletes, archive=archives)

    result = default_executor(paths).apply(plan, ["default"], api)

    undo_items = sum(e.count for e in UndoLog(paths.undo_log).read())
    assert len(plan.delete) + len(plan.archive) == undo_items + result.failures


def test_prelog_write_failure_aborts_only_that_category(tmp_path: Path) -> None:
    paths = ConfigPaths.from_dir(tmp_path)
    paths.deletion_log.mkdir()
    d = make_message("d1", "a@x.com")
    a = make_message("a1", "b@x.com")
    api = FakeMailService([d, a])

    result = default_executor(paths).apply(_plan(delete=[d], archive=[a]), ["default"], api)

    assert result.categories["delete"].error
    assert api.ops("trash") == []
    assert api.ops("archive") == [("default", ("a1",))]
    assert [e.action for e in UndoLog(paths.undo_log).read()] == ["archive"]


def test_undo_write_failure_after_mutation_is_a_warning(tmp_path: Path) -> None:
    paths = ConfigPaths.from_dir(tmp_path)
    paths.undo_log.mkdir()
    d = make_message("d1", "a@x.com")
    api = FakeMailService([d])

    result = default_executor(paths).apply(_plan(delete=[d]), ["default"], api)

    assert result.categories["delete"].succeeded == 1
    assert result.categories["delete"].undo_entry_id is None
    assert any("Reconcile" in w for w in result.warnings)


def test_cancel_before_prelog_has_no_durable_effect(tmp_path: Path) -> None:
    paths = ConfigPaths.from_dir(tmp_path)
    d = make_message("d1", "a@x.com")
    api = FakeMailService([d])
    token = CancelToken()
    token.cancel()

    with pytest.raises(Cancelled) as excinfo:
        default_executor(paths).apply(_plan(delete=[d]), ["default"], api, cancel_token=token)

    assert excinfo.value.result.cancelled is True
    assert api.calls == []
    assert list(tmp_path.iterdir()) == []


def test_cancel_after_mutation_warns_that_undo_is_missing(tmp_path: Path) -> None:
    paths = ConfigPaths.from_dir(tmp_path)
    d = make_message("d1", "a@x.com")
    a = make_message("a1", "b@x.com")
    api = FakeMailService([d, a])
    token = CancelToken()
    api.after_call = lambda op: token.cancel()

    with pytest.raises(Cancelled) as excinfo:
        default_executor(paths).apply(_plan(delete=[d], archive=[a]), ["default"], api, cancel_token=token)

    partial = excinfo.value.result
    assert partial.categories["delete"].succeeded == 1
    assert any("cannot be undone" in w for w in partial.warnings)
    assert UndoLog(paths.undo_log).read() == []
    assert api.ops("archive") == []
    assert partial.to_dict()["cancelled"] is True


class CancellingDeleteHandler(DeleteHandler):
    def __init__(self, log, token: CancelToken) -> None:
        super().__init__(log)
        self.token = token

    def pre_log(self, messages) -> None:
        super().pre_log(messages)
        self.token.cancel()


def test_cancel_after_prelog_keeps_log_and_skips_mutation(tmp_path: Path) -> None:
    paths = ConfigPaths.from_dir(tmp_path)
    messages = [make_message("d1", "a@x.com"), make_message("d2", "a@x.com")]
    api = FakeMailService(messages)
    token = CancelToken()
    executor = ActionExecutor(
        handlers={PlanCategory.DELETE: CancellingDeleteHandler(deletion_log(paths.deletion_log), token)},
        undo_log=UndoLog(paths.undo_log),
    )

    with pytest.raises(Cancelled) as excinfo:
        executor.apply(_plan(delete=messages), ["default"], api, cancel_token=token)

    assert api.ops("trash") == []
    assert [e["id"] for e in deletion_log(paths.deletion_log).read()] == ["d1", "d2"]
    assert UndoLog(paths.undo_log).read() == []
    assert any("nothing was changed" in w for w in excinfo.value.result.warnings)


class BrokenAccountService(FakeMailService):
    def trash(self, account, ids):
        if account == "broken":
            raise ValueError("unexpected payload")
        return super().trash(account, ids)


def test_unexpected_error_on_one_account_fails_only_its_ids(tmp_path: Path) -> None:
    paths = ConfigPaths.from_dir(tmp_path)
    ok = make_message("m1", "a@x.com", account="home")
    bad = make_message("m2", "a@x.com", account="broken")
    api = BrokenAccountService([ok, bad])

    result = default_executor(paths).apply(_plan(delete=[ok, bad]), ["home", "broken"], api)

    outcome = result.categories["delete"]
    assert [(r.id, r.success, r.error) for r in outcome.by_account["broken"]] == [
        ("m2", False, "unexpected payload")
    ]
    (entry,) = UndoLog(paths.undo_log).read()
    assert [item.key for item in entry.items] == [("home", "m1")]


def test_totals_count_only_selected_accounts(tmp_path: Path) -> None:
    paths = ConfigPaths.from_dir(tmp_path)
    home = make_message("m1", "a@x.com", account="home")
    work = make_message("m2", "a@x.com", account="work")
    api = FakeMailService([home, work])

    result = default_executor(paths).apply(_plan(delete=[home, work], archive=[]), ["home"], api, dry_run=True)

    assert result.to_dict()["totals"] == {"delete": 1, "archive": 0, "markRead": 0, "protected": 0}
