"""Identity Provider contract and the Firebase Authentication implementation.

Firebase Authentication is reached through its public REST endpoints
(Identity Toolkit + Secure Token). Federated sign-in runs Google's OAuth
installed-app flow: the interactive path opens a browser window, and when no
browser can be launched the same flow continues through a printed
authorization link and the loopback redirect.
"""

from __future__ import annotations

import logging
import webbrowser
from typing import Any, Callable, Dict, List, Optional, Protocol

import anyio
import requests
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token
from google_auth_oauthlib.flow import InstalledAppFlow

from ..config import Settings
from ..exceptions import ProviderError, ProviderErrorCode
from ..models.domain import Identity


IdentityListener = Callable[[Optional[Identity]], None]

IDENTITY_TOOLKIT_URL = "https://identitytoolkit.googleapis.com/v1"
SECURE_TOKEN_URL = "https://securetoken.googleapis.com/v1/token"
GOOGLE_SCOPES = [
    "openid",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/userinfo.profile",
]

_UNAUTHORIZED_ORIGIN_MARKERS = (
    "UNAUTHORIZED_DOMAIN",
    "INVALID_API_KEY",
    "API_KEY_INVALID",
    "API key not valid",
    "redirect_uri_mismatch",
    "unauthorized_client",
    "invalid_client",
)


class IdentityProvider(Protocol):
    refresh_token: Optional[str]

    def current_identity(self) -> Optional[Identity]: ...

    def on_change(self, callback: IdentityListener) -> Callable[[], None]: ...

    async def authenticate_federated(self, interactive: bool = True) -> Identity: ...

    async def authenticate_anonymous(self) -> Identity: ...

    async def update_display_identity(self, uid: str, display_name: str, avatar_url: str) -> Identity: ...

    async def restore(self, refresh_token: str) -> Optional[Identity]: ...

    async def sign_out(self) -> None: ...


def classify_provider_error(message: str) -> ProviderErrorCode:
    """Map a provider error message onto the client's error codes."""
    if "popup" in message.lower() or "could not locate runnable browser" in message.lower():
        return ProviderErrorCode.BLOCKED
    if any(marker.lower() in message.lower() for marker in _UNAUTHORIZED_ORIGIN_MARKERS):
        return ProviderErrorCode.UNAUTHORIZED_ORIGIN
    return ProviderErrorCode.UNKNOWN


class FirebaseIdentityProvider:
    """Firebase Authentication over REST."""

    def __init__(self, settings: Settings, http: Optional[requests.Session] = None) -> None:
        self.settings = settings
        self.http = http or requests.Session()
        self.refresh_token: Optional[str] = None
        self._id_token: Optional[str] = None
        self._identity: Optional[Identity] = None
        self._listeners: List[IdentityListener] = []
        logging.info(f"FirebaseIdentityProvider initialized for project '{settings.firebase_project_id}'")

    # ------------------------------------------------------------------ #
    # Session state
    # ------------------------------------------------------------------ #
    def current_identity(self) -> Optional[Identity]:
        return self._identity

    def on_change(self, callback: IdentityListener) -> Callable[[], None]:
        self._listeners.append(callback)

        def _unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return _unsubscribe

    def _set_identity(self, identity: Optional[Identity]) -> None:
        self._identity = identity
        for listener in list(self._listeners):
            listener(identity)

    # ------------------------------------------------------------------ #
    # REST plumbing
    # ------------------------------------------------------------------ #
    def _post(self, url: str, payload: Dict[str, Any], form: bool = False) -> Dict[str, Any]:
        params = {"key": self.settings.firebase_api_key}
        if form:
            response = self.http.post(url, params=params, data=payload)
        else:
            response = self.http.post(url, params=params, json=payload)
        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.status_code >= 400:
            error = body.get("error", {}) if isinstance(body, dict) else {}
            message = error.get("message") if isinstance(error, dict) else str(error)
            message = message or f"HTTP {response.status_code}"
            raise ProviderError(f"Identity provider rejected request: {message}", classify_provider_error(message))
        return body

    async def _call(self, endpoint: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{IDENTITY_TOOLKIT_URL}/{endpoint}"
        try:
            return await anyio.to_thread.run_sync(lambda: self._post(url, payload))
        except requests.RequestException as e:
            raise ProviderError(f"Identity provider unreachable: {e}") from e

    def _identity_from(self, body: Dict[str, Any], anonymous: bool) -> Identity:
        return Identity(
            uid=body["localId"],
            displayName=body.get("displayName") or None,
            email=body.get("email") or None,
            photoURL=body.get("photoUrl") or None,
            isAnonymous=anonymous,
        )

    # ------------------------------------------------------------------ #
    # Admission paths
    # ------------------------------------------------------------------ #
    async def authenticate_anonymous(self) -> Identity:
        body = await self._call("accounts:signUp", {"returnSecureToken": True})
        self._id_token = body.get("idToken")
        self.refresh_token = body.get("refreshToken")
        identity = self._identity_from(body, anonymous=True)
        logging.info(f"Anonymous identity {identity.uid} issued")
        self._set_identity(identity)
        return identity

    async def update_display_identity(self, uid: str, display_name: str, avatar_url: str) -> Identity:
        if self._identity is None or self._identity.uid != uid:
            raise ProviderError(f"Cannot update profile of inactive identity {uid}")
        await self._call(
            "accounts:update",
            {
                "idToken": self._id_token,
                "displayName": display_name,
                "photoUrl": avatar_url,
                "returnSecureToken": False,
            },
        )
        identity = self._identity.model_copy(update={"displayName": display_name, "photoURL": avatar_url})
        self._set_identity(identity)
        return identity

    def _run_oauth_flow(self, interactive: bool) -> str:
        if not self.settings.google_client_id:
            raise ProviderError("Google OAuth client is not configured", ProviderErrorCode.UNAUTHORIZED_ORIGIN)
        flow = InstalledAppFlow.from_client_config(
            {
                "installed": {
                    "client_id": self.settings.google_client_id,
                    "client_secret": self.settings.google_client_secret,
                    "auth_uri": "https://accounts.google.com/o/oauth2/auth",
                    "token_uri": "https://oauth2.googleapis.com/token",
                    "redirect_uris": ["http://localhost"],
                }
            },
            scopes=GOOGLE_SCOPES,
        )
        try:
            credentials = flow.run_local_server(
                port=self.settings.oauth_redirect_port,
                open_browser=interactive,
                prompt="select_account",
                authorization_prompt_message="Open this link to finish signing in: {url}",
            )
        except webbrowser.Error as e:
            raise ProviderError(f"Sign-in window blocked: {e}", ProviderErrorCode.BLOCKED) from e
        except Exception as e:
            raise ProviderError(f"Federated sign-in failed: {e}", classify_provider_error(str(e))) from e

        token = getattr(credentials, "id_token", None)
        if not token:
            raise ProviderError("Federated sign-in returned no ID token")
        return token

    def _verify_google_token(self, token: str) -> Dict[str, Any]:
        try:
            return id_token.verify_oauth2_token(token, google_requests.Request(), self.settings.google_client_id)
        except ValueError as e:
            logging.error(f"Token verification failed: {e}", exc_info=True)
            raise ProviderError(f"Invalid Google ID token: {e}", classify_provider_error(str(e))) from e

    async def authenticate_federated(self, interactive: bool = True) -> Identity:
        google_token = await anyio.to_thread.run_sync(lambda: self._run_oauth_flow(interactive))
        claims = await anyio.to_thread.run_sync(lambda: self._verify_google_token(google_token))
        logging.debug(f"Google token verified for {claims.get('email')}")
        body = await self._call(
            "accounts:signInWithIdp",
            {
                "postBody": f"id_token={google_token}&providerId=google.com",
                "requestUri": "http://localhost",
                "returnSecureToken": True,
                "returnIdpCredential": True,
            },
        )
        self._id_token = body.get("idToken")
        self.refresh_token = body.get("refreshToken")
        identity = self._identity_from(body, anonymous=False)
        identity = identity.model_copy(
            update={
                "displayName": identity.displayName or claims.get("name"),
                "email": identity.email or claims.get("email"),
                "photoURL": identity.photoURL or claims.get("picture"),
            }
        )
        logging.info(f"Federated identity {identity.uid} signed in")
        self._set_identity(identity)
        return identity

    async def restore(self, refresh_token: str) -> Optional[Identity]:
        """Resume a session from a persisted refresh token."""

        def _refresh() -> Dict[str, Any]:
            return self._post(
                SECURE_TOKEN_URL,
                {"grant_type": "refresh_token", "refresh_token": refresh_token},
                form=True,
            )

        try:
            tokens = await anyio.to_thread.run_sync(_refresh)
        except requests.RequestException as e:
            raise ProviderError(f"Identity provider unreachable: {e}") from e
        self._id_token = tokens.get("id_token")
        self.refresh_token = tokens.get("refresh_token", refresh_token)

        body = await self._call("accounts:lookup", {"idToken": self._id_token})
        users = body.get("users") or []
        if not users:
            return None
        record = users[0]
        identity = self._identity_from(record, anonymous=not record.get("providerUserInfo"))
        self._set_identity(identity)
        return identity

    async def sign_out(self) -> None:
        self._id_token = None
        self.refresh_token = None
        self._set_identity(None)
