from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from inboxd.errors import InvalidArgument
from inboxd.storage.atomic import atomic_write_json, read_json

DEFAULT_ACCOUNT = "default"
ALL_ACCOUNTS = "all"


@dataclass(frozen=True)
class Account:
    name: str
    email: Optional[str] = None


def load_accounts(path: Path) -> List[Account]:
    data = read_json(path, dict)
    raw = data.get("accounts") if isinstance(data, dict) else None
    if not isinstance(raw, list):
        return []
    return [
        Account(name=str(item["name"]), email=item.get("email"))
        for item in raw
        if isinstance(item, dict) and item.get("name")
    ]


def save_account(path: Path, name: str, email: Optional[str] = None) -> Account:
    if not name or not name.strip():
        raise InvalidArgument("Account name is required.")
    accounts = [a for a in load_accounts(path) if a.name != name.strip()]
    account = Account(name=name.strip(), email=email)
    accounts.append(account)
    atomic_write_json(path, {"accounts": [{"name": a.name, "email": a.email} for a in accounts]})
    return account


def resolve_accounts(requested: Optional[str], configured: List[Account]) -> List[str]:
    """Map an --account value to mailbox names.

    "all" (or nothing) means every configured account, or "default" when none
    is configured; a named account must be configured unless none are.
    """
    names = [a.name for a in configured]
    if not requested or requested == ALL_ACCOUNTS:
        return names or [DEFAULT_ACCOUNT]
    if names and requested not in names:
        raise InvalidArgument(
            f'Unknown account "{requested}". Configured accounts: {", ".join(names)}'
        )
    return [requested]


def resolve_single_account(requested: Optional[str], configured: List[Account]) -> str:
    """Pick exactly one mailbox; ambiguous when several are configured and none named."""
    if requested and requested != ALL_ACCOUNTS:
        return resolve_accounts(requested, configured)[0]
    if not configured:
        return DEFAULT_ACCOUNT
    if len(configured) == 1:
        return configured[0].name
    raise InvalidArgument(
        "Multiple accounts configured. Please specify --account <name> "
        f"({', '.join(a.name for a in configured)})"
    )
