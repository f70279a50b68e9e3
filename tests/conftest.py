"""
Shared test fixtures and configuration for pytest.
"""

import asyncio
import os
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

# Set test environment before importing app modules
os.environ["ENVIRONMENT"] = "development"
os.environ["STORE_BACKEND"] = "memory"
os.environ["SESSION_STATE_PATH"] = str(Path(tempfile.mkdtemp()) / "session.json")

from chatsync.config import Settings
from chatsync.models.domain import Identity
from chatsync.services.client import ChatClient
from chatsync.services.feed import MessageFeed
from chatsync.services.handshake import ContactHandshake
from chatsync.services.memory_store import InMemoryDocumentStore
from chatsync.services.session import SessionManager
from chatsync.services.session_state import SessionStateStore


async def settle(rounds: int = 5) -> None:
    """Let pending store notifications reach their subscribers."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeClock:
    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeIdentityProvider:
    """Identity Provider double that records calls and issues predictable uids."""

    def __init__(self):
        self.refresh_token: Optional[str] = None
        self.federated_outcomes: List[object] = []
        self.calls: List[tuple] = []
        self.sessions: Dict[str, Identity] = {}
        self._identity: Optional[Identity] = None
        self._listeners: List[Callable] = []
        self._counter = 0

    def current_identity(self) -> Optional[Identity]:
        return self._identity

    def on_change(self, callback):
        self._listeners.append(callback)
        return lambda: self._listeners.remove(callback)

    def _issue(self, identity: Identity) -> Identity:
        self._counter += 1
        self.refresh_token = f"refresh-{self._counter}"
        self.sessions[self.refresh_token] = identity
        self._identity = identity
        for listener in list(self._listeners):
            listener(identity)
        return identity

    async def authenticate_federated(self, interactive: bool = True) -> Identity:
        self.calls.append(("federated", interactive))
        outcome = self.federated_outcomes.pop(0) if self.federated_outcomes else None
        if isinstance(outcome, Exception):
            raise outcome
        identity = outcome or Identity(
            uid="google-uid-1",
            displayName="Ada Lovelace",
            email="ada@example.com",
            photoURL="https://example.com/ada.png",
        )
        return self._issue(identity)

    async def authenticate_anonymous(self) -> Identity:
        self.calls.append(("anonymous",))
        return self._issue(Identity(uid=f"anon-{self._counter + 1}", isAnonymous=True))

    async def update_display_identity(self, uid: str, display_name: str, avatar_url: str) -> Identity:
        self.calls.append(("update", uid, display_name))
        self._identity = self._identity.model_copy(update={"displayName": display_name, "photoURL": avatar_url})
        self.sessions[self.refresh_token] = self._identity
        return self._identity

    async def restore(self, refresh_token: str) -> Optional[Identity]:
        self.calls.append(("restore", refresh_token))
        identity = self.sessions.get(refresh_token)
        if identity is not None:
            self.refresh_token = refresh_token
            self._identity = identity
        return identity

    async def sign_out(self) -> None:
        self.calls.append(("sign_out",))
        self._identity = None
        self.refresh_token = None
        for listener in list(self._listeners):
            listener(None)


def make_settings(tmp_path: Path, **overrides) -> Settings:
    values = dict(
        environment="development",
        store_backend="memory",
        session_state_path=tmp_path / "session.json",
        expiry_sweep_interval_seconds=60.0,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock) -> InMemoryDocumentStore:
    return InMemoryDocumentStore(clock=clock)


@pytest.fixture
def provider() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture
def state_store(settings) -> SessionStateStore:
    return SessionStateStore(settings.session_state_path)


@pytest.fixture
def session(provider, store, state_store, settings, clock) -> SessionManager:
    return SessionManager(provider, store, state_store, settings=settings, clock=clock)


@pytest.fixture
def feed(store, settings) -> MessageFeed:
    return MessageFeed(store, settings)


@pytest.fixture
def handshake(store, settings) -> ContactHandshake:
    return ContactHandshake(store, settings)


@pytest.fixture
def chat_client(session, feed, handshake) -> ChatClient:
    return ChatClient(session, feed, handshake)


@pytest.fixture
def alice() -> Identity:
    return Identity(uid="alice-uid", displayName="Alice", photoURL="https://example.com/alice.png")


@pytest.fixture
def bob() -> Identity:
    return Identity(uid="bob-uid", displayName="Bob", nickname="Bob", isAnonymous=True)


@pytest.fixture
async def profiles(store, alice, bob):
    """Mirror alice and bob into the users collection."""
    await store.set("users", alice.uid, {"displayName": alice.displayName, "isAnonymous": False})
    await store.set("users", bob.uid, {"displayName": bob.displayName, "nickname": bob.nickname, "isAnonymous": True})
    store.writes.clear()
    return alice, bob
