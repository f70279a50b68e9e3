"""Error taxonomy for the chat client.

Every failure in this package is per-operation and recoverable by the user
retrying. Each error carries an internal message for the logs and a
``user_message`` that is safe to show in the UI.
"""

from enum import Enum
from typing import Optional


class ChatSyncError(Exception):
    """Base exception for chat client errors."""

    code: str = "error"

    def __init__(self, message: str, user_message: Optional[str] = None):
        super().__init__(message)
        self.user_message = user_message or "Something went wrong. Please try again."


class ValidationError(ChatSyncError):
    """Input rejected locally; no write was attempted."""

    code = "validation_error"

    def __init__(self, message: str, field: Optional[str] = None, user_message: Optional[str] = None):
        super().__init__(message, user_message or message)
        self.field = field


class ProviderErrorCode(str, Enum):
    BLOCKED = "blocked"
    UNAUTHORIZED_ORIGIN = "unauthorized_origin"
    UNKNOWN = "unknown"


_PROVIDER_MESSAGES = {
    ProviderErrorCode.BLOCKED: "The sign-in window could not be opened. Finish signing in from the link shown.",
    ProviderErrorCode.UNAUTHORIZED_ORIGIN: "This client is not authorized to sign in with the identity provider.",
    ProviderErrorCode.UNKNOWN: "Sign-in failed. Please try again later.",
}


class ProviderError(ChatSyncError):
    """Identity Provider failure, classified by ``code``."""

    def __init__(self, message: str, code: ProviderErrorCode = ProviderErrorCode.UNKNOWN):
        super().__init__(message, _PROVIDER_MESSAGES[code])
        self.code = code.value
        self.reason = code


class StoreWriteError(ChatSyncError):
    """A write to the document store failed. Never retried automatically."""

    code = "store_write_error"

    def __init__(self, message: str, user_message: Optional[str] = None):
        super().__init__(message, user_message or "Could not save your change. Please try again.")


class RequestAlreadyResolved(ChatSyncError):
    """A chat request already left the pending state."""

    code = "request_already_resolved"

    def __init__(self, request_id: str, status: Optional[str] = None):
        super().__init__(
            f"Chat request {request_id} is no longer pending (status={status})",
            "This request has already been answered.",
        )
        self.request_id = request_id
        self.status = status


class NotAuthenticated(ChatSyncError):
    code = "not_authenticated"

    def __init__(self, message: str = "No active session"):
        super().__init__(message, "Please sign in first.")
