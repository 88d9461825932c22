from __future__ import annotations

import threading
from typing import Any, Optional

from inboxd.errors import Cancelled


class CancelToken:
    """Cooperative cancellation flag checked between I/O steps."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, result: Optional[Any] = None) -> None:
        if self._event.is_set():
            raise Cancelled(result=result)
