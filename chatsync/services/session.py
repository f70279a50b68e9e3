"""Identity & session management.

Owns the single authoritative answer to "who is using the client right now":

    Unauthenticated -> Authenticating [-> AwaitingRedirect] -> Authenticated{durable|ephemeral|bypass}
    Authenticated -> Unauthenticated  (logout or ephemeral expiry)

Ephemeral (anonymous) sessions last ``anonymous_session_ttl_hours``. A
periodic sweep forces logout once that window has passed. The sweep runs
only while the client runs and does not revoke anything store-side.
"""

from __future__ import annotations

import asyncio
import datetime as _dt
import logging
from enum import Enum
from typing import Callable, List, Optional
from urllib.parse import quote

from ..config import Settings, get_settings
from ..exceptions import ProviderError, ProviderErrorCode, StoreWriteError, ValidationError
from ..models.domain import Identity
from .identity import IdentityProvider
from .session_state import SessionState, SessionStateStore
from .store import SERVER_TIMESTAMP, DocumentStore


Clock = Callable[[], _dt.datetime]
SessionListener = Callable[["SessionManager"], None]

BYPASS_UID = "dev-user-123"


class SessionStatus(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AWAITING_REDIRECT = "awaiting_redirect"
    AUTHENTICATED = "authenticated"


class SessionKind(str, Enum):
    DURABLE = "durable"
    EPHEMERAL = "ephemeral"
    BYPASS = "bypass"


def _utcnow() -> _dt.datetime:
    return _dt.datetime.now(_dt.timezone.utc)


def avatar_url(base_url: str, name: str) -> str:
    return f"{base_url}?name={quote(name, safe='')}&background=random"


def validate_nickname(nickname: str, min_length: int = 3, max_length: int = 20) -> str:
    nickname = (nickname or "").strip()
    if not min_length <= len(nickname) <= max_length:
        raise ValidationError(
            f"Nickname must be between {min_length} and {max_length} characters",
            field="nickname",
        )
    return nickname


class SessionManager:
    def __init__(
        self,
        provider: IdentityProvider,
        store: DocumentStore,
        state_store: SessionStateStore,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.provider = provider
        self.store = store
        self.state_store = state_store
        self.settings = settings or get_settings()
        self.clock = clock or _utcnow

        self.status = SessionStatus.UNAUTHENTICATED
        self.kind: Optional[SessionKind] = None
        self.identity: Optional[Identity] = None

        self._state = SessionState()
        self._listeners: List[SessionListener] = []
        self._sweep_task: Optional[asyncio.Task] = None
        provider.on_change(self._on_provider_change)

    # ------------------------------------------------------------------ #
    # State
    # ------------------------------------------------------------------ #
    @property
    def ttl(self) -> _dt.timedelta:
        return _dt.timedelta(hours=self.settings.anonymous_session_ttl_hours)

    @property
    def is_authenticated(self) -> bool:
        return self.status is SessionStatus.AUTHENTICATED and self.identity is not None

    @property
    def state(self) -> SessionState:
        return self._state.model_copy()

    def on_change(self, listener: SessionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _transition(
        self,
        status: SessionStatus,
        kind: Optional[SessionKind] = None,
        identity: Optional[Identity] = None,
    ) -> None:
        self.status = status
        self.kind = kind
        self.identity = identity
        suffix = f" ({kind.value})" if kind else ""
        logging.info(f"Session -> {status.value}{suffix}")
        for listener in list(self._listeners):
            listener(self)

    def _on_provider_change(self, identity: Optional[Identity]) -> None:
        # sessions ended by the provider itself (e.g. revoked refresh token)
        if identity is None and self.kind in (SessionKind.DURABLE, SessionKind.EPHEMERAL):
            self._transition(SessionStatus.UNAUTHENTICATED)

    async def _discard_provider_session(self) -> None:
        """Sign out a provider session left behind by a failed login."""
        if self.provider.current_identity() is None:
            return
        try:
            await self.provider.sign_out()
        except Exception as e:
            logging.error(f"Failed to discard provider session: {e}", exc_info=True)

    def _save_state(self) -> None:
        self.state_store.save(self._state)

    def _bypass_identity(self) -> Identity:
        return Identity(
            uid=BYPASS_UID,
            email="dev@example.com",
            displayName="Developer",
            photoURL=avatar_url(self.settings.avatar_base_url, "Developer"),
            isAnonymous=False,
        )

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    async def start(self) -> None:
        """Restore a persisted session and start the expiration sweep."""
        self._state = self.state_store.load()
        if self._state.dev_mode:
            if self.settings.bypass_allowed:
                self._transition(SessionStatus.AUTHENTICATED, SessionKind.BYPASS, self._bypass_identity())
            else:
                logging.warning("Ignoring persisted development session outside development mode")
                self._state.dev_mode = False
                self._save_state()
        elif self._state.refresh_token:
            await self._restore_provider_session()
        elif self._state.anonymous_user_id:
            self._state.clear_anonymous()
            self._save_state()

        if self._sweep_task is None:
            self._sweep_task = asyncio.create_task(self.run_expiration_sweep())

    async def _restore_provider_session(self) -> None:
        try:
            identity = await self.provider.restore(self._state.refresh_token)
        except ProviderError as e:
            logging.warning(f"Could not restore previous session: {e}")
            identity = None
        if identity is None:
            self._state = SessionState()
            self._save_state()
            return

        if identity.isAnonymous:
            created_at = self._state.anonymous_login_time
            identity = identity.model_copy(
                update={
                    "nickname": identity.displayName,
                    "createdAt": created_at,
                    "expiresAt": created_at + self.ttl if created_at else None,
                }
            )
            self._transition(SessionStatus.AUTHENTICATED, SessionKind.EPHEMERAL, identity)
            await self.check_expiration()
        else:
            self._transition(SessionStatus.AUTHENTICATED, SessionKind.DURABLE, identity)

    async def stop(self) -> None:
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None

    # ------------------------------------------------------------------ #
    # Admission paths
    # ------------------------------------------------------------------ #
    async def login_federated(self) -> Identity:
        """Sign in through the federated provider, falling back to the redirect flow."""
        self._transition(SessionStatus.AUTHENTICATING)
        try:
            try:
                identity = await self.provider.authenticate_federated(interactive=True)
            except ProviderError as e:
                if e.reason is not ProviderErrorCode.BLOCKED:
                    raise
                logging.info("Interactive sign-in blocked, continuing with redirect flow")
                self._transition(SessionStatus.AWAITING_REDIRECT)
                identity = await self.provider.authenticate_federated(interactive=False)
        except ProviderError as e:
            logging.error(f"Federated login failed ({e.code}): {e}", exc_info=True)
            self._transition(SessionStatus.UNAUTHENTICATED)
            raise
        except Exception as e:
            logging.error(f"Unexpected error during federated login: {e}", exc_info=True)
            self._transition(SessionStatus.UNAUTHENTICATED)
            raise ProviderError(str(e)) from e

        identity = identity.model_copy(update={"isAnonymous": False, "lastSeen": self.clock()})
        profile = {
            "displayName": identity.displayName,
            "email": identity.email,
            "photoURL": identity.photoURL,
            "isAnonymous": False,
            "lastSeen": SERVER_TIMESTAMP,
        }
        try:
            await self.store.set(self.settings.users_collection, identity.uid, profile, merge=True)
        except Exception as e:
            # the provider session is valid; the profile mirror catches up on the next login
            logging.error(f"Failed to mirror profile for {identity.uid}: {e}", exc_info=True)

        self._state = SessionState(refresh_token=self.provider.refresh_token)
        self._save_state()
        self._transition(SessionStatus.AUTHENTICATED, SessionKind.DURABLE, identity)
        return identity

    async def login_anonymous(self, nickname: str) -> Identity:
        """Create an ephemeral identity that expires after the configured TTL."""
        nickname = validate_nickname(
            nickname, self.settings.nickname_min_length, self.settings.nickname_max_length
        )
        photo_url = avatar_url(self.settings.avatar_base_url, nickname)

        self._transition(SessionStatus.AUTHENTICATING)
        try:
            identity = await self.provider.authenticate_anonymous()
            identity = await self.provider.update_display_identity(identity.uid, nickname, photo_url)
        except ProviderError as e:
            logging.error(f"Anonymous login failed ({e.code}): {e}", exc_info=True)
            await self._discard_provider_session()
            self._transition(SessionStatus.UNAUTHENTICATED)
            raise
        except Exception as e:
            logging.error(f"Unexpected error during anonymous login: {e}", exc_info=True)
            await self._discard_provider_session()
            self._transition(SessionStatus.UNAUTHENTICATED)
            raise ProviderError(str(e)) from e

        created_at = self.clock()
        identity = identity.model_copy(
            update={
                "nickname": nickname,
                "displayName": nickname,
                "photoURL": photo_url,
                "isAnonymous": True,
                "createdAt": created_at,
                "expiresAt": created_at + self.ttl,
                "lastSeen": created_at,
            }
        )
        profile = {
            "nickname": nickname,
            "displayName": nickname,
            "isAnonymous": True,
            "createdAt": identity.createdAt,
            "expiresAt": identity.expiresAt,
            "lastSeen": SERVER_TIMESTAMP,
            "photoURL": photo_url,
        }
        try:
            await self.store.set(self.settings.users_collection, identity.uid, profile)
        except Exception as e:
            logging.error(f"Failed to write ephemeral profile for {identity.uid}: {e}", exc_info=True)
            await self._discard_provider_session()
            self._transition(SessionStatus.UNAUTHENTICATED)
            raise StoreWriteError(
                str(e), "Could not create a temporary account. Please try again later."
            ) from e

        self._state = SessionState(
            anonymous_login_time=created_at,
            anonymous_user_id=identity.uid,
            refresh_token=self.provider.refresh_token,
        )
        self._save_state()
        self._transition(SessionStatus.AUTHENTICATED, SessionKind.EPHEMERAL, identity)
        return identity

    def bypass_auth(self) -> Optional[Identity]:
        """Development-only fixed identity. Does nothing outside development."""
        if not self.settings.bypass_allowed:
            logging.warning("Auth bypass requested outside development mode; ignoring")
            return None
        identity = self._bypass_identity()
        self._state = SessionState(dev_mode=True)
        self._save_state()
        self._transition(SessionStatus.AUTHENTICATED, SessionKind.BYPASS, identity)
        return identity

    # ------------------------------------------------------------------ #
    # Eviction
    # ------------------------------------------------------------------ #
    async def logout(self) -> None:
        if self.kind is SessionKind.BYPASS:
            self._state.dev_mode = False
            self._save_state()
            self._transition(SessionStatus.UNAUTHENTICATED)
            return

        was_anonymous = self.kind is SessionKind.EPHEMERAL
        try:
            await self.provider.sign_out()
        except Exception as e:
            logging.error(f"Error during logout: {e}", exc_info=True)
            raise

        if was_anonymous:
            self._state.clear_anonymous()
        self._state.refresh_token = None
        self._save_state()
        if self.status is not SessionStatus.UNAUTHENTICATED:
            self._transition(SessionStatus.UNAUTHENTICATED)

    def expires_at(self) -> Optional[_dt.datetime]:
        if self.kind is not SessionKind.EPHEMERAL or self._state.anonymous_login_time is None:
            return None
        return self._state.anonymous_login_time + self.ttl

    async def check_expiration(self) -> bool:
        """One sweep tick. Returns True when the session was ended."""
        expires_at = self.expires_at()
        if expires_at is None:
            return False
        if self.clock() >= expires_at:
            uid = self.identity.uid if self.identity else "?"
            logging.info(f"Ephemeral session {uid} expired at {expires_at.isoformat()}")
            await self.logout()
            return True
        return False

    async def run_expiration_sweep(self) -> None:
        interval = self.settings.expiry_sweep_interval_seconds
        while True:
            await asyncio.sleep(interval)
            try:
                await self.check_expiration()
            except Exception as e:
                logging.error(f"Expiration sweep failed: {e}", exc_info=True)
