from __future__ import annotations

from datetime import datetime, timedelta, timezone
from email.utils import format_datetime

from fakes import make_message
from inboxd.rules.core import Rule, RuleAction
from inboxd.rules.matcher import confirm_matches, is_older_than, message_matches_rule, parse_message_date

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def _days_ago(days: int) -> str:
    return format_datetime(NOW - timedelta(days=days))


def test_sender_is_case_insensitive_substring() -> None:
    rule = Rule(id="r", action=RuleAction.AUTO_ARCHIVE, sender="GitHub.com")

    assert message_matches_rule(make_message("m", "Notifications <noreply@github.com>"), rule, NOW)
    assert not message_matches_rule(make_message("m", "someone@gitlab.com"), rule, NOW)


def test_older_than_gating() -> None:
    rule = Rule(id="r", action=RuleAction.ALWAYS_DELETE, sender="ex.com", older_than_days=30)
    old = make_message("old", "a@ex.com", date=_days_ago(40))
    fresh = make_message("new", "a@ex.com", date=_days_ago(5))

    assert confirm_matches([old, fresh], rule, NOW) == [old]


def test_unparseable_date_never_qualifies() -> None:
    assert is_older_than("not a date", 1, NOW) is False
    assert is_older_than("", 1, NOW) is False
    assert is_older_than("not a date", None, NOW) is True


def test_boundary_is_strict() -> None:
    assert is_older_than(_days_ago(30), 30, NOW) is False
    assert is_older_than(format_datetime(NOW - timedelta(days=30, seconds=1)), 30, NOW) is True


def test_iso_dates_are_accepted() -> None:
    parsed = parse_message_date("2024-01-02T03:04:05Z")

    assert parsed == datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


def test_confirm_matches_dedups_keeps_order_and_account() -> None:
    rule = Rule(id="r", action=RuleAction.AUTO_ARCHIVE, sender="x.com")
    a1 = make_message("m1", "n@x.com", account="a")
    b1 = make_message("m1", "n@x.com", account="b")
    a2 = make_message("m2", "n@x.com", account="a")

    assert confirm_matches([a1, b1, a1, a2], rule, NOW) == [a1, b1, a2]
