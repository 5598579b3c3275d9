from typing import Optional


class ChatError(Exception):
    """Base class for every error raised by the chat core."""


class ValidationError(ChatError, ValueError):
    """Input rejected before anything was written."""


class NotFoundError(ChatError, LookupError):
    """A conversation, message, invite or user id that does not exist."""


class TransientStoreError(ChatError):
    """The backing store could not be reached or failed mid-operation.

    ``draft`` carries the text the user was trying to send, so the caller can
    put it back into the input box instead of dropping it.
    """

    def __init__(self, message: str, draft: Optional[str] = None) -> None:
        super().__init__(message)
        self.draft = draft

    def with_draft(self, draft: Optional[str]) -> "TransientStoreError":
        return TransientStoreError(str(self), draft=draft)
