from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from fakes import FakeMailService, make_message
from inboxd.actions.cancel import CancelToken
from inboxd.actions.executor import default_executor
from inboxd.actions.undo import restore_logged, undo_last
from inboxd.config.paths import ConfigPaths
from inboxd.errors import Cancelled, InvalidArgument
from inboxd.pipeline.planner import RuleMatches, build_action_plan
from inboxd.rules.core import Rule, RuleAction
from inboxd.storage.action_log import archive_log, deletion_log
from inboxd.storage.undo_log import UndoLog


def _apply(paths: ConfigPaths, api: FakeMailService, action: RuleAction, messages):
    plan = build_action_plan([RuleMatches(Rule(id="r1", action=action, sender="x.com"), tuple(messages))])
    accounts = sorted({m.account for m in messages})
    return default_executor(paths).apply(plan, accounts, api)


def test_undo_of_partial_success_apply(tmp_path: Path) -> None:
    paths = ConfigPaths.from_dir(tmp_path)
    messages = [make_message(mid, "a@x.com") for mid in ("m1", "m2", "m3")]
    api = FakeMailService(messages)
    archive_log(paths.archive_log).append([make_message("z1", "z@z.com")])
    api.failing_ids = {"m3"}
    _apply(paths, api, RuleAction.ALWAYS_DELETE, messages)

    api.failing_ids = {"m2"}
    result = undo_last(default_executor(paths), api)

    (entry,) = UndoLog(paths.undo_log).read()
    assert [item.id for item in entry.items] == ["m2"]
    assert entry.count == 1
    assert result.remaining.count == 1
    assert result.log_pruned == 1
    assert [e["id"] for e in deletion_log(paths.deletion_log).read()] == ["m2", "m3"]
    assert [e["id"] for e in archive_log(paths.archive_log).read()] == ["z1"]
    assert api.ops("untrash") == [("default", ("m1", "m2"))]


def test_full_undo_closes_entry_and_restores_messages(tmp_path: Path) -> None:
    paths = ConfigPaths.from_dir(tmp_path)
    messages = [make_message("m1", "a@x.com", account="home"), make_message("m1", "a@x.com", account="work")]
    api = FakeMailService(messages)
    _apply(paths, api, RuleAction.AUTO_ARCHIVE, messages)

    result = undo_last(default_executor(paths), api)

    assert result.reversed_keys == {("home", "m1"), ("work", "m1")}
    assert result.remaining is None
    assert UndoLog(paths.undo_log).read() == []
    assert archive_log(paths.archive_log).read() == []
    assert all("INBOX" in labels for labels in api.labels.values())
    assert result.to_dict()["action"] == "archive"


def test_undo_twice_does_not_replay(tmp_path: Path) -> None:
    paths = ConfigPaths.from_dir(tmp_path)
    api = FakeMailService([make_message("m1", "a@x.com")])
    _apply(paths, api, RuleAction.ALWAYS_DELETE, [make_message("m1", "a@x.com")])
    executor = default_executor(paths)

    undo_last(executor, api)
    second = undo_last(executor, api)

    assert second.to_dict() == {"undone": False, "reason": "Nothing to undo", "warnings": []}
    assert len(api.ops("untrash")) == 1


def test_undo_picks_the_most_recent_entry(tmp_path: Path) -> None:
    paths = ConfigPaths.from_dir(tmp_path)
    d = make_message("d1", "a@x.com")
    a = make_message("a1", "b@x.com")
    api = FakeMailService([d, a])
    executor = default_executor(paths)
    executor.undo_log.record("archive", [a], created_at=datetime(2024, 1, 1, tzinfo=timezone.utc))
    newest = executor.undo_log.record("delete", [d], created_at=datetime(2024, 1, 2, tzinfo=timezone.utc))
    older_first = executor.undo_log.read()
    assert [e.action for e in older_first] == ["archive", "delete"]

    result = undo_last(executor, api)

    assert result.entry.id == newest.id
    assert api.ops("untrash") == [("default", ("d1",))]
    assert [e.action for e in UndoLog(paths.undo_log).read()] == ["archive"]


def test_cancelled_undo_leaves_entry_untouched(tmp_path: Path) -> None:
    paths = ConfigPaths.from_dir(tmp_path)
    api = FakeMailService([make_message("m1", "a@x.com")])
    _apply(paths, api, RuleAction.ALWAYS_DELETE, [make_message("m1", "a@x.com")])
    token = CancelToken()
    token.cancel()

    with pytest.raises(Cancelled):
        undo_last(default_executor(paths), api, cancel_token=token)

    assert api.ops("untrash") == []
    assert len(UndoLog(paths.undo_log).read()) == 1


def test_restore_by_id_shrinks_undo_entry(tmp_path: Path) -> None:
    paths = ConfigPaths.from_dir(tmp_path)
    messages = [make_message("m1", "a@x.com"), make_message("m2", "a@x.com")]
    api = FakeMailService(messages)
    _apply(paths, api, RuleAction.ALWAYS_DELETE, messages)

    result = restore_logged("delete", default_executor(paths), api, ids=["m1", "ghost"])

    assert result.reversed_keys == {("default", "m1")}
    assert any("ghost" in w for w in result.warnings)
    (entry,) = UndoLog(paths.undo_log).read()
    assert [item.id for item in entry.items] == ["m2"]
    assert [e["id"] for e in deletion_log(paths.deletion_log).read()] == ["m2"]


def test_restore_last_unarchives_newest(tmp_path: Path) -> None:
    paths = ConfigPaths.from_dir(tmp_path)
    messages = [make_message("m1", "a@x.com")]
    api = FakeMailService(messages)
    _apply(paths, api, RuleAction.AUTO_ARCHIVE, messages)

    result = restore_logged("archive", default_executor(paths), api, last=5)

    assert api.ops("unarchive") == [("default", ("m1",))]
    assert result.log_pruned == 1
    assert UndoLog(paths.undo_log).read() == []


def test_restore_requires_exactly_one_selector(tmp_path: Path) -> None:
    executor = default_executor(ConfigPaths.from_dir(tmp_path))

    with pytest.raises(InvalidArgument):
        restore_logged("delete", executor, FakeMailService())
    with pytest.raises(InvalidArgument):
        restore_logged("markRead", executor, FakeMailService(), last=1)
