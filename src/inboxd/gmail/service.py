from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List, Optional, Sequence

from google.auth.exceptions import RefreshError, TransportError
from googleapiclient.errors import HttpError

from inboxd.config.paths import ConfigPaths
from inboxd.errors import RemoteError
from inboxd.gmail.client import GmailClient, GmailClientConfig
from inboxd.gmail.labels import INBOX_LABEL, UNREAD_LABEL
from inboxd.models import Message, MutationResult

logger = logging.getLogger(__name__)

# Failures googleapiclient raises once its own retries are exhausted.
TRANSPORT_ERRORS = (RefreshError, TransportError, OSError)
# GmailClient.connect raises RuntimeError when no usable token exists.
CONNECT_ERRORS = (RuntimeError,) + TRANSPORT_ERRORS


def describe_http_error(exc: HttpError) -> str:
    status = getattr(exc.resp, "status", None)
    if status == 404:
        return "Message not found"
    if status in (401, 403):
        return f"Not authorized ({status}); re-run 'inbox auth'"
    reason = exc.reason if hasattr(exc, "reason") else str(exc)
    return f"HTTP {status}: {reason}" if status else str(reason)


def describe_error(exc: Exception) -> str:
    if isinstance(exc, HttpError):
        return describe_http_error(exc)
    return str(exc) or type(exc).__name__


def message_from_resource(account: str, msg: Dict) -> Message:
    headers = {h["name"].lower(): h["value"] for h in msg.get("payload", {}).get("headers", [])}
    return Message(
        id=msg["id"],
        thread_id=msg.get("threadId"),
        account=account,
        from_=headers.get("from", ""),
        subject=headers.get("subject", ""),
        date=headers.get("date", ""),
        label_ids=tuple(str(x) for x in (msg.get("labelIds") or [])),
        snippet=msg.get("snippet", ""),
    )


class GmailMailService:
    """MailService over one GmailClient per account, created lazily."""

    unread_label = UNREAD_LABEL

    def __init__(
        self,
        paths: ConfigPaths,
        *,
        max_workers: int = 8,
        num_retries: int = 1,
        interactive: bool = False,
        client_factory: Optional[Callable[[GmailClientConfig], GmailClient]] = None,
    ) -> None:
        self._paths = paths
        self._max_workers = max_workers
        self._num_retries = num_retries
        self._interactive = interactive
        self._client_factory = client_factory or GmailClient
        self._clients: Dict[str, GmailClient] = {}

    def client(self, account: str) -> GmailClient:
        if account not in self._clients:
            cfg = GmailClientConfig(
                credentials_path=self._paths.credentials,
                token_path=self._paths.token(account),
                num_retries=self._num_retries,
                interactive=self._interactive,
            )
            client = self._client_factory(cfg)
            client.connect()
            self._clients[account] = client
        return self._clients[account]

    def search(self, account: str, query: str, max_results: int) -> List[Message]:
        try:
            client = self.client(account)
            ids = client.list_messages(query=query, max_results=max_results)
        except HttpError as exc:
            raise RemoteError(describe_http_error(exc), account=account) from exc
        except CONNECT_ERRORS as exc:
            raise RemoteError(describe_error(exc), account=account) from exc
        if not ids:
            return []

        def fetch(message_id: str) -> Optional[Message]:
            try:
                return message_from_resource(account, client.get_message(message_id, fmt="metadata"))
            except HttpError as exc:
                # Deleted or moved between list and fetch.
                logger.warning("Skipping %s/%s: %s", account, message_id, describe_http_error(exc))
                return None

        try:
            with ThreadPoolExecutor(max_workers=self._max_workers) as pool:
                fetched = list(pool.map(fetch, ids))
        except TRANSPORT_ERRORS as exc:
            raise RemoteError(describe_error(exc), account=account) from exc
        return [m for m in fetched if m is not None]

    def _each(self, account: str, ids: Sequence[str], op: Callable[[GmailClient, str], object]) -> List[MutationResult]:
        try:
            client = self.client(account)
        except CONNECT_ERRORS as exc:
            logger.error("Cannot connect account %s: %s", account, exc)
            return [MutationResult(id=mid, success=False, error=describe_error(exc)) for mid in ids]

        def run(message_id: str) -> MutationResult:
            try:
                op(client, message_id)
            except (HttpError,) + TRANSPORT_ERRORS as exc:
                logger.warning("%s/%s failed: %s", account, message_id, describe_error(exc))
                return MutationResult(id=message_id, success=False, error=describe_error(exc))
            return MutationResult(id=message_id, success=True)

        with ThreadPoolExecutor(max_workers=self._max_workers) as pool:
            # map() keeps request order.
            return list(pool.map(run, ids))

    def trash(self, account: str, ids: Sequence[str]) -> List[MutationResult]:
        return self._each(account, ids, lambda c, mid: c.trash(mid))

    def untrash(self, account: str, ids: Sequence[str]) -> List[MutationResult]:
        return self._each(account, ids, lambda c, mid: c.untrash(mid))

    def archive(self, account: str, ids: Sequence[str]) -> List[MutationResult]:
        return self._each(account, ids, lambda c, mid: c.modify_labels(mid, remove=[INBOX_LABEL]))

    def unarchive(self, account: str, ids: Sequence[str]) -> List[MutationResult]:
        return self._each(account, ids, lambda c, mid: c.modify_labels(mid, add=[INBOX_LABEL]))

    def mark_read(self, account: str, ids: Sequence[str]) -> List[MutationResult]:
        return self._each(account, ids, lambda c, mid: c.modify_labels(mid, remove=[self.unread_label]))
