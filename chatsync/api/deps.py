import logging
from functools import lru_cache

from fastapi import HTTPException, status

from chatsync.config import get_settings
from chatsync.exceptions import (
    ChatSyncError,
    NotAuthenticated,
    ProviderError,
    ProviderErrorCode,
    RequestAlreadyResolved,
    StoreWriteError,
    ValidationError,
)
from chatsync.services.client import ChatClient
from chatsync.services.feed import MessageFeed
from chatsync.services.handshake import ContactHandshake
from chatsync.services.identity import FirebaseIdentityProvider
from chatsync.services.memory_store import InMemoryDocumentStore
from chatsync.services.session import SessionManager
from chatsync.services.session_state import SessionStateStore
from chatsync.services.store import DocumentStore, FirestoreDocumentStore

settings = get_settings()


def to_http_exception(exc: ChatSyncError) -> HTTPException:
    """Translate a client error into the HTTP error shown to the UI."""
    if isinstance(exc, ValidationError):
        status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    elif isinstance(exc, ProviderError):
        status_code = status.HTTP_409_CONFLICT if exc.reason is ProviderErrorCode.BLOCKED else status.HTTP_401_UNAUTHORIZED
    elif isinstance(exc, NotAuthenticated):
        status_code = status.HTTP_401_UNAUTHORIZED
    elif isinstance(exc, RequestAlreadyResolved):
        status_code = status.HTTP_409_CONFLICT
    elif isinstance(exc, StoreWriteError):
        status_code = status.HTTP_502_BAD_GATEWAY
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=status_code, detail={"message": exc.user_message, "code": exc.code})


@lru_cache()
def get_store() -> DocumentStore:
    if settings.store_backend == "memory":
        logging.info("Initializing in-memory document store...")
        return InMemoryDocumentStore()
    logging.info("Initializing FirestoreDocumentStore...")
    return FirestoreDocumentStore(
        project_id=settings.firebase_project_id,
        db_name=settings.firestore_database,
        service_account_file=settings.google_service_account_json,
    )


@lru_cache()
def get_chat_client() -> ChatClient:
    """Provides the process-wide ChatClient."""
    logging.info("Initializing ChatClient...")
    store = get_store()
    session = SessionManager(
        provider=FirebaseIdentityProvider(settings),
        store=store,
        state_store=SessionStateStore(settings.session_state_path),
        settings=settings,
    )
    return ChatClient(
        session=session,
        feed=MessageFeed(store, settings),
        handshake=ContactHandshake(store, settings),
    )
