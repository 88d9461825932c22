from __future__ import annotations

import logging
import secrets
import string
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from inboxd.errors import InvalidArgument
from inboxd.rules.core import Rule, RuleAction, normalize_older_than_days
from inboxd.storage.atomic import atomic_write_json, read_json

logger = logging.getLogger(__name__)

RULES_VERSION = 1
_ID_ALPHABET = string.ascii_lowercase + string.digits


def default_document() -> Dict[str, Any]:
    return {"version": RULES_VERSION, "rules": []}


def generate_rule_id() -> str:
    rand = "".join(secrets.choice(_ID_ALPHABET) for _ in range(6))
    return f"rule_{int(time.time() * 1000)}_{rand}"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class RuleStore:
    """Rules persisted as {"version": 1, "rules": [...]} in one JSON file.

    Records this version cannot execute (unknown action, not an object) are
    hidden from list_rules() but written back untouched, and unknown
    top-level keys survive every rewrite.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def read_document(self) -> Dict[str, Any]:
        data = read_json(self._path, default_document)
        if not isinstance(data, dict) or not isinstance(data.get("rules"), list):
            return default_document()
        doc = dict(data)
        doc["version"] = data.get("version") or RULES_VERSION
        doc["rules"] = list(data["rules"])
        return doc

    def list_rules(self) -> List[Rule]:
        return self._parse_rules(self.read_document()["rules"])

    def add_rule(
        self,
        action: Any,
        sender: Optional[str],
        older_than_days: Any = None,
    ) -> Tuple[Rule, bool]:
        """Return (rule, created); an equivalent existing rule is returned as-is."""
        rule_action = RuleAction.parse(action)
        if not sender or not sender.strip():
            raise InvalidArgument("Sender is required.")
        normalized_sender = sender.strip()
        days = normalize_older_than_days(older_than_days)

        doc = self.read_document()
        identity = (rule_action.value, normalized_sender.casefold(), days)
        for existing in self._parse_rules(doc["rules"]):
            if existing.identity == identity:
                return existing, False

        taken = {str(raw.get("id")) for raw in doc["rules"] if isinstance(raw, dict)}
        rule_id = generate_rule_id()
        while rule_id in taken:
            rule_id = generate_rule_id()

        rule = Rule(
            id=rule_id,
            action=rule_action,
            sender=normalized_sender,
            older_than_days=days,
            created_at=_utc_now_iso(),
        )
        doc["rules"].append(rule.to_dict())
        atomic_write_json(self._path, doc)
        logger.info("Added rule %s (%s %s)", rule.id, rule.action.value, rule.sender)
        return rule, True

    def remove_rule(self, rule_id: str) -> Optional[Rule]:
        if not rule_id or not str(rule_id).strip():
            raise InvalidArgument("Rule id is required.")
        doc = self.read_document()
        for index, raw in enumerate(doc["rules"]):
            if isinstance(raw, dict) and raw.get("id") == rule_id:
                del doc["rules"][index]
                atomic_write_json(self._path, doc)
                logger.info("Removed rule %s", rule_id)
                try:
                    return Rule.from_dict(raw)
                except InvalidArgument:
                    # Removed a record this version could not execute; nothing to return.
                    return None
        return None

    @staticmethod
    def _parse_rules(raw_rules: List[Any]) -> List[Rule]:
        rules: List[Rule] = []
        for raw in raw_rules:
            try:
                rules.append(Rule.from_dict(raw))
            except InvalidArgument:
                logger.debug("Skipping unsupported rule record: %r", raw)
        return rules
