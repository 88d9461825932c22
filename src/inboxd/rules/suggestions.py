from __future__ import annotations

from typing import Any, Dict, List, Optional

from inboxd.rules.core import RuleAction


def build_suggested_rules(analysis: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Turn deletion-log patterns into candidate rules the user can add."""
    if not analysis:
        return {"period": 0, "totalDeleted": 0, "suggestions": []}

    period = analysis.get("period") or 0
    suggestions: List[Dict[str, Any]] = []

    for sender in analysis.get("frequentDeleters") or []:
        suggestions.append(
            {
                "action": RuleAction.ALWAYS_DELETE.value,
                "sender": sender["domain"],
                "reason": f"Deleted {sender['deletedCount']} times in the last {period} days",
                "source": "frequentDeleters",
            }
        )

    for sender in analysis.get("neverReadSenders") or []:
        suggestions.append(
            {
                "action": RuleAction.AUTO_ARCHIVE.value,
                "sender": sender["domain"],
                "reason": f"Deleted unread {sender['deletedCount']} times in the last {period} days",
                "source": "neverReadSenders",
            }
        )

    return {
        "period": period,
        "totalDeleted": analysis.get("totalDeleted") or 0,
        "suggestions": suggestions,
    }
