"""
Tests for the chat client wiring between session, feed and handshake.
"""

import pytest

from chatsync.exceptions import NotAuthenticated
from chatsync.services.session import SessionStatus

from conftest import settle


async def test_subscriptions_follow_the_session(chat_client, store):
    assert store.listener_count() == 0

    await chat_client.session.login_anonymous("Bob")

    assert chat_client.feed.is_open
    assert chat_client.handshake.is_open
    assert store.listener_count() == 2

    await chat_client.session.logout()

    assert not chat_client.feed.is_open
    assert not chat_client.handshake.is_open
    assert store.listener_count() == 0


async def test_expiry_releases_subscriptions(chat_client, store, clock):
    await chat_client.session.login_anonymous("Bob")

    clock.advance(hours=24, seconds=1)
    await chat_client.session.check_expiration()

    assert chat_client.session.status is SessionStatus.UNAUTHENTICATED
    assert store.listener_count() == 0


async def test_operations_require_a_session(chat_client):
    with pytest.raises(NotAuthenticated):
        await chat_client.send_message("hi")
    with pytest.raises(NotAuthenticated):
        await chat_client.request_contact("someone")


async def test_send_uses_current_identity(chat_client):
    identity = await chat_client.session.login_anonymous("Bob")
    await settle()

    await chat_client.send_message("hi")
    await settle()

    [message] = chat_client.feed.messages
    assert message.text == "hi"
    assert message.uid == identity.uid
    assert message.displayName == "Bob"


async def test_stop_releases_everything(chat_client, store):
    await chat_client.start()
    await chat_client.session.login_federated()

    await chat_client.stop()

    assert store.listener_count() == 0
