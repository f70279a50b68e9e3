from .client import ChatClient
from .feed import MessageFeed
from .handshake import ContactHandshake
from .session import SessionKind, SessionManager, SessionStatus

__all__ = [
    "ChatClient",
    "ContactHandshake",
    "MessageFeed",
    "SessionKind",
    "SessionManager",
    "SessionStatus",
]
