"""Exception classes shared by the rule engine, the stores and the CLI."""

from __future__ import annotations

from typing import Any, Optional


class InboxdError(Exception):
    """Base class for all errors the command driver knows how to render."""


class InvalidArgument(InboxdError):
    """Raised for an unknown action, an empty sender or a malformed reference."""


class StorageError(InboxdError):
    """Raised when a config-directory file cannot be written.

    Reading a corrupt or missing file is never an error; readers degrade to
    an empty default instead.
    """


class RemoteError(InboxdError):
    """Raised by the Gmail binding for a non-retryable failure.

    Mutations never raise it; they report the reason per message instead.
    """

    def __init__(self, reason: str, *, account: Optional[str] = None) -> None:
        self.reason = reason
        self.account = account
        super().__init__(f"{account}: {reason}" if account else reason)


class Cancelled(InboxdError):
    """Raised when a cancellation request is observed between I/O steps.

    Attributes:
        result: The partial result collected before the cancellation, if any.
    """

    def __init__(self, message: str = "Operation cancelled", result: Optional[Any] = None) -> None:
        self.result = result
        super().__init__(message)
