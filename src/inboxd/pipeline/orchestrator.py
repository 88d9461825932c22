from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from inboxd.actions.cancel import CancelToken
from inboxd.errors import RemoteError
from inboxd.gmail.protocol import MailService
from inboxd.models import Message
from inboxd.pipeline.planner import RuleMatches
from inboxd.rules.core import Rule
from inboxd.rules.matcher import confirm_matches
from inboxd.rules.query import build_rule_query

logger = logging.getLogger(__name__)


def collect_rule_matches(
    rules: Sequence[Rule],
    accounts: Sequence[str],
    api: MailService,
    *,
    limit: int,
    now: Optional[datetime] = None,
    cancel_token: Optional[CancelToken] = None,
    warn: Optional[Callable[[str], None]] = None,
) -> List[RuleMatches]:
    """Search every account once per rule and keep the client-confirmed matches.

    A failed search for one account is reported through warn() and
    contributes no matches; the remaining accounts and rules still run.
    """
    token = cancel_token or CancelToken()
    out: List[RuleMatches] = []

    for rule in rules:
        query = build_rule_query(rule)
        if not query:
            logger.info("Skipping rule %s: no sender to search for", rule.id)
            out.append(RuleMatches(rule=rule, skipped=True))
            continue

        candidates: List[Message] = []
        for account in accounts:
            token.raise_if_cancelled()
            try:
                found = api.search(account, query, limit)
            except RemoteError as exc:
                message = f"Search failed for rule {rule.id} on {account}: {exc.reason}"
                logger.warning(message)
                if warn:
                    warn(message)
                continue
            logger.debug("Rule %s on %s: %d server results", rule.id, account, len(found))
            candidates.extend(found)

        out.append(RuleMatches(rule=rule, messages=tuple(confirm_matches(candidates, rule, now))))

    return out
