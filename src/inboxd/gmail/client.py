from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build

logger = logging.getLogger(__name__)

# Modify is required for trash/untrash and label changes.
SCOPES = ["https://www.googleapis.com/auth/gmail.modify"]

# Gmail caps messages.list pages at 500 ids.
_MAX_PAGE_SIZE = 500


@dataclass(frozen=True)
class GmailClientConfig:
    # Path to OAuth client credentials downloaded from Google Cloud Console.
    credentials_path: Path
    # Token cache will be created here after first login.
    token_path: Path
    # Gmail userId, "me" refers to the authenticated user.
    user_id: str = "me"
    # Retries for 5xx/429 responses, handled by googleapiclient.
    num_retries: int = 1
    # Allow the browser consent flow when no usable token is cached.
    interactive: bool = True


class GmailClient:
    def __init__(self, cfg: GmailClientConfig):
        self._cfg = cfg
        self._creds: Optional[Credentials] = None
        # httplib2 is not thread-safe, so every worker thread builds its own service.
        self._local = threading.local()
        self._lock = threading.Lock()

    def connect(self) -> None:
        """Load (or obtain) credentials for this mailbox."""
        creds = None

        if self._cfg.token_path.exists():
            creds = Credentials.from_authorized_user_file(str(self._cfg.token_path), SCOPES)

        # If there are no (valid) credentials available, let the user log in.
        if not creds or not creds.valid:
            if creds and creds.expired and creds.refresh_token:
                creds.refresh(Request())
            elif not self._cfg.interactive:
                raise RuntimeError(
                    f"No valid Gmail token at {self._cfg.token_path}. Run 'inbox auth' first."
                )
            else:
                if not self._cfg.credentials_path.exists():
                    raise RuntimeError(f"Missing Gmail credentials at {self._cfg.credentials_path}.")
                flow = InstalledAppFlow.from_client_secrets_file(
                    str(self._cfg.credentials_path),
                    SCOPES,
                )
                creds = flow.run_local_server(port=0)

            # Save the credentials for the next run.
            self._cfg.token_path.parent.mkdir(parents=True, exist_ok=True)
            self._cfg.token_path.write_text(creds.to_json(), encoding="utf-8")

        self._creds = creds

    @property
    def service(self):
        if self._creds is None:
            with self._lock:
                if self._creds is None:
                    self.connect()
        service = getattr(self._local, "service", None)
        if service is None:
            service = build("gmail", "v1", credentials=self._creds, cache_discovery=False)
            self._local.service = service
        return service

    def _messages(self):
        return self.service.users().messages()

    def list_messages(self, query: str = "", max_results: int = 10) -> List[str]:
        """
        List message IDs matching a Gmail search query, following pages up to max_results.
        Example query: 'from:news@example.com older_than:30d'
        """
        ids: List[str] = []
        page_token: Optional[str] = None
        while len(ids) < max_results:
            resp = (
                self._messages()
                .list(
                    userId=self._cfg.user_id,
                    q=query,
                    maxResults=min(_MAX_PAGE_SIZE, max_results - len(ids)),
                    pageToken=page_token,
                )
                .execute(num_retries=self._cfg.num_retries)
            )
            ids.extend(m["id"] for m in resp.get("messages", []))
            page_token = resp.get("nextPageToken")
            if not page_token:
                break
        return ids[:max_results]

    def get_message(self, message_id: str, fmt: str = "metadata") -> Dict[str, Any]:
        """
        Fetch a message resource.
        fmt: 'full' | 'metadata' | 'minimal' | 'raw'
        """
        kwargs: Dict[str, Any] = {"userId": self._cfg.user_id, "id": message_id, "format": fmt}
        if fmt == "metadata":
            kwargs["metadataHeaders"] = ["From", "Subject", "Date"]
        return self._messages().get(**kwargs).execute(num_retries=self._cfg.num_retries)

    def modify_labels(
        self,
        message_id: str,
        *,
        add: Sequence[str] = (),
        remove: Sequence[str] = (),
    ) -> Dict[str, Any]:
        body = {"addLabelIds": list(add), "removeLabelIds": list(remove)}
        return (
            self._messages()
            .modify(userId=self._cfg.user_id, id=message_id, body=body)
            .execute(num_retries=self._cfg.num_retries)
        )

    def trash(self, message_id: str) -> Dict[str, Any]:
        return (
            self._messages()
            .trash(userId=self._cfg.user_id, id=message_id)
            .execute(num_retries=self._cfg.num_retries)
        )

    def untrash(self, message_id: str) -> Dict[str, Any]:
        return (
            self._messages()
            .untrash(userId=self._cfg.user_id, id=message_id)
            .execute(num_retries=self._cfg.num_retries)
        )

    def get_profile(self) -> Dict[str, Any]:
        """Get the Gmail profile of the authenticated user."""
        return (
            self.service.users()
            .getProfile(userId=self._cfg.user_id)
            .execute(num_retries=self._cfg.num_retries)
        )
