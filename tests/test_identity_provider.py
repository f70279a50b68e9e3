"""
Tests for the Firebase Authentication REST provider.
"""

import webbrowser
from unittest.mock import MagicMock, patch

import pytest

from chatsync.exceptions import ProviderError, ProviderErrorCode
from chatsync.services.identity import FirebaseIdentityProvider, classify_provider_error

from conftest import make_settings


def _response(status_code, body):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = body
    return response


@pytest.fixture
def http():
    return MagicMock()


@pytest.fixture
def firebase(tmp_path, http):
    settings = make_settings(
        tmp_path,
        firebase_api_key="test-key",
        firebase_project_id="demo-project",
        google_client_id="client-id.apps.googleusercontent.com",
        google_client_secret="secret",
    )
    return FirebaseIdentityProvider(settings, http=http)


@pytest.mark.parametrize(
    "message, expected",
    [
        ("UNAUTHORIZED_DOMAIN : Domain not whitelisted", ProviderErrorCode.UNAUTHORIZED_ORIGIN),
        ("API key not valid. Please pass a valid API key.", ProviderErrorCode.UNAUTHORIZED_ORIGIN),
        ("redirect_uri_mismatch", ProviderErrorCode.UNAUTHORIZED_ORIGIN),
        ("could not locate runnable browser", ProviderErrorCode.BLOCKED),
        ("TOO_MANY_ATTEMPTS_TRY_LATER", ProviderErrorCode.UNKNOWN),
    ],
)
def test_classify_provider_error(message, expected):
    assert classify_provider_error(message) is expected


async def test_anonymous_sign_up(firebase, http):
    http.post.return_value = _response(200, {"localId": "anon-1", "idToken": "id", "refreshToken": "refresh"})
    seen = []
    firebase.on_change(seen.append)

    identity = await firebase.authenticate_anonymous()

    assert identity.uid == "anon-1"
    assert identity.isAnonymous is True
    assert firebase.refresh_token == "refresh"
    assert firebase.current_identity() == identity
    assert seen == [identity]
    url = http.post.call_args.args[0]
    assert url.endswith("accounts:signUp")
    assert http.post.call_args.kwargs["params"] == {"key": "test-key"}


async def test_update_display_identity(firebase, http):
    http.post.side_effect = [
        _response(200, {"localId": "anon-1", "idToken": "id", "refreshToken": "refresh"}),
        _response(200, {"localId": "anon-1"}),
    ]
    await firebase.authenticate_anonymous()

    identity = await firebase.update_display_identity("anon-1", "Bob", "https://avatars/bob")

    assert identity.displayName == "Bob"
    assert identity.photoURL == "https://avatars/bob"
    payload = http.post.call_args.kwargs["json"]
    assert payload["idToken"] == "id"
    assert payload["displayName"] == "Bob"


async def test_rest_error_is_classified(firebase, http):
    http.post.return_value = _response(400, {"error": {"message": "UNAUTHORIZED_DOMAIN"}})

    with pytest.raises(ProviderError) as exc_info:
        await firebase.authenticate_anonymous()

    assert exc_info.value.code == "unauthorized_origin"


async def test_blocked_browser_is_reported(firebase):
    flow = MagicMock()
    flow.run_local_server.side_effect = webbrowser.Error("could not locate runnable browser")
    with patch("chatsync.services.identity.InstalledAppFlow.from_client_config", return_value=flow):
        with pytest.raises(ProviderError) as exc_info:
            await firebase.authenticate_federated(interactive=True)

    assert exc_info.value.reason is ProviderErrorCode.BLOCKED
    assert flow.run_local_server.call_args.kwargs["open_browser"] is True


async def test_federated_sign_in_exchanges_verified_token(firebase, http):
    flow = MagicMock()
    flow.run_local_server.return_value = MagicMock(id_token="google-id-token")
    http.post.return_value = _response(
        200,
        {"localId": "g-1", "displayName": "Ada", "email": "ada@example.com", "idToken": "id", "refreshToken": "r"},
    )
    claims = {"email": "ada@example.com", "name": "Ada", "picture": "https://example.com/ada.png"}

    with patch("chatsync.services.identity.InstalledAppFlow.from_client_config", return_value=flow), \
         patch("chatsync.services.identity.id_token.verify_oauth2_token", return_value=claims) as verify:
        identity = await firebase.authenticate_federated(interactive=False)

    assert verify.call_args.args[0] == "google-id-token"
    assert verify.call_args.args[2] == "client-id.apps.googleusercontent.com"
    assert flow.run_local_server.call_args.kwargs["open_browser"] is False
    assert identity.uid == "g-1"
    assert identity.isAnonymous is False
    assert identity.photoURL == "https://example.com/ada.png"
    assert "id_token=google-id-token" in http.post.call_args.kwargs["json"]["postBody"]


async def test_federated_requires_client_id(tmp_path, http):
    provider = FirebaseIdentityProvider(make_settings(tmp_path, google_client_id=""), http=http)

    with pytest.raises(ProviderError) as exc_info:
        await provider.authenticate_federated()

    assert exc_info.value.reason is ProviderErrorCode.UNAUTHORIZED_ORIGIN


async def test_restore_and_sign_out(firebase, http):
    http.post.side_effect = [
        _response(200, {"id_token": "id-2", "refresh_token": "refresh-2", "user_id": "g-1"}),
        _response(200, {"users": [{"localId": "g-1", "email": "ada@example.com", "providerUserInfo": [{"providerId": "google.com"}]}]}),
    ]
    seen = []
    firebase.on_change(seen.append)

    identity = await firebase.restore("refresh-1")

    assert identity.uid == "g-1"
    assert identity.isAnonymous is False
    assert firebase.refresh_token == "refresh-2"
    assert http.post.call_args_list[0].kwargs["data"]["grant_type"] == "refresh_token"

    await firebase.sign_out()

    assert firebase.current_identity() is None
    assert firebase.refresh_token is None
    assert seen == [identity, None]
