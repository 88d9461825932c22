from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from fakes import make_message
from inboxd.errors import InvalidArgument
from inboxd.models import UndoItem
from inboxd.storage.undo_log import UndoLog


def test_record_snapshots_messages(tmp_path: Path) -> None:
    log = UndoLog(tmp_path / "undo-log.json")

    entry = log.record("delete", [make_message("m1", "a@x.com", account="home")])

    assert entry is not None
    assert entry.id.startswith("undo_")
    payload = json.loads(log.path.read_text(encoding="utf-8"))
    assert payload[0]["count"] == 1
    assert payload[0]["items"] == [
        {"id": "m1", "threadId": "t-m1", "account": "home", "from": "a@x.com", "subject": "Subject m1"}
    ]


def test_record_nothing_returns_none(tmp_path: Path) -> None:
    log = UndoLog(tmp_path / "undo-log.json")

    assert log.record("archive", []) is None
    assert not log.path.exists()


def test_record_rejects_irreversible_action(tmp_path: Path) -> None:
    with pytest.raises(InvalidArgument):
        UndoLog(tmp_path / "undo-log.json").record("markRead", [make_message("m1", "a@x.com")])


def test_latest_sorts_by_created_at(tmp_path: Path) -> None:
    log = UndoLog(tmp_path / "undo-log.json")
    base = datetime(2024, 1, 1, tzinfo=timezone.utc)
    newer = log.record("archive", [make_message("b", "a@x.com")], created_at=base + timedelta(hours=1))
    log.record("delete", [make_message("a", "a@x.com")], created_at=base)

    assert log.latest().id == newer.id
    assert [e.action for e in log.recent()] == ["archive", "delete"]


def test_replace_items_rederives_count_and_remove_closes(tmp_path: Path) -> None:
    log = UndoLog(tmp_path / "undo-log.json")
    entry = log.record("delete", [make_message("m1", "a@x.com"), make_message("m2", "a@x.com")])

    shrunk = log.replace_items(entry.id, [UndoItem(id="m2", thread_id="t-m2", account="default")])

    assert shrunk.count == 1
    assert json.loads(log.path.read_text(encoding="utf-8"))[0]["count"] == 1
    assert log.remove(entry.id) is True
    assert log.remove(entry.id) is False
    assert log.read() == []
