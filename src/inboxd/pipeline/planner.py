"""Merge per-rule match sets into one action plan.

Precedence is fixed: never-delete protects a message from every other
action, then delete beats archive, and archive beats mark-read. Within an
action the first rule in list order to claim a message wins.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence, Set

from inboxd.errors import InvalidArgument
from inboxd.gmail.labels import UNREAD_LABEL
from inboxd.models import Message, MessageKey
from inboxd.rules.core import Rule, RuleAction


@dataclass(frozen=True)
class RuleMatches:
    rule: Rule
    messages: Sequence[Message] = ()
    # Rule produced no searchable query.
    skipped: bool = False


@dataclass
class RuleSummary:
    rule: Rule
    matches: int = 0
    applied: int = 0
    protected: int = 0
    skipped: bool = False

    def to_dict(self) -> Dict[str, Any]:
        out = {
            "id": self.rule.id,
            "action": self.rule.action.value,
            "sender": self.rule.sender,
            "olderThanDays": self.rule.older_than_days,
            "matches": self.matches,
            "applied": self.applied,
            "protected": self.protected,
        }
        if self.skipped:
            out["skipped"] = True
        return out


@dataclass
class ActionPlan:
    delete: List[Message] = field(default_factory=list)
    archive: List[Message] = field(default_factory=list)
    mark_read: List[Message] = field(default_factory=list)
    # dict keeps insertion order; values unused.
    protected: Dict[MessageKey, None] = field(default_factory=dict)
    rule_summaries: List[RuleSummary] = field(default_factory=list)

    @property
    def skipped_rules(self) -> List[Rule]:
        return [s.rule for s in self.rule_summaries if s.skipped]

    @property
    def is_empty(self) -> bool:
        return not (self.delete or self.archive or self.mark_read)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "delete": [m.to_dict() for m in self.delete],
            "archive": [m.to_dict() for m in self.archive],
            "markRead": [m.to_dict() for m in self.mark_read],
            "protected": [{"account": k.account, "id": k.id} for k in self.protected],
            "rules": [s.to_dict() for s in self.rule_summaries],
            "skipped": [r.id for r in self.skipped_rules],
        }


def _unique_keys(messages: Sequence[Message]) -> Dict[MessageKey, None]:
    return dict.fromkeys(m.key for m in messages)


def build_action_plan(rule_matches: Sequence[RuleMatches], unread_label: str = UNREAD_LABEL) -> ActionPlan:
    plan = ActionPlan()
    summaries: Dict[int, RuleSummary] = {}

    for index, item in enumerate(rule_matches):
        if not isinstance(item, RuleMatches) or not isinstance(item.rule, Rule):
            raise InvalidArgument(f"Rule match #{index} is not a RuleMatches record")
        summary = RuleSummary(
            rule=item.rule,
            matches=len(_unique_keys(item.messages)),
            skipped=item.skipped,
        )
        summaries[index] = summary
        plan.rule_summaries.append(summary)

    def claims(action: RuleAction):
        for index, item in enumerate(rule_matches):
            if item.rule.action is action:
                for message in item.messages:
                    yield summaries[index], message

    # Pass 1: protection is computed on raw matches.
    for index, item in enumerate(rule_matches):
        if item.rule.action is RuleAction.NEVER_DELETE:
            keys = _unique_keys(item.messages)
            summaries[index].protected = len(keys)
            plan.protected.update(keys)

    claimed: Set[MessageKey] = set(plan.protected)

    # Passes 2-4, strongest action first.
    passes = (
        (RuleAction.ALWAYS_DELETE, plan.delete),
        (RuleAction.AUTO_ARCHIVE, plan.archive),
        (RuleAction.AUTO_MARK_READ, plan.mark_read),
    )
    for action, bucket in passes:
        for summary, message in claims(action):
            if message.key in claimed:
                continue
            if action is RuleAction.AUTO_MARK_READ and unread_label not in message.label_ids:
                # Already read; marking it again would be a no-op mutation.
                continue
            claimed.add(message.key)
            bucket.append(message)
            summary.applied += 1

    return plan
