"""
Tests for the Firestore-backed store. Most run against a mocked client; the
rest use a real client with anonymous credentials and never reach the network.
"""

import threading
from unittest.mock import AsyncMock, MagicMock

import pytest
from google.auth.credentials import AnonymousCredentials
from google.cloud import firestore

from chatsync.exceptions import ValidationError
from chatsync.services.handshake import ContactHandshake
from chatsync.services.store import FirestoreDocumentStore, OrderBy, StoredDocument

from conftest import settle


@pytest.fixture
def query():
    q = MagicMock()
    q.where.return_value = q
    q.order_by.return_value = q
    q.limit.return_value = q
    return q


@pytest.fixture
def client(query):
    c = MagicMock()
    c.collection.return_value = query
    return c


@pytest.fixture
def firestore_store(client):
    return FirestoreDocumentStore(project_id="demo-project", client=client)


def _snapshot(doc_id, data):
    snapshot = MagicMock()
    snapshot.id = doc_id
    snapshot.exists = True
    snapshot.to_dict.return_value = data
    return snapshot


def test_query_composition(firestore_store, client, query):
    firestore_store._build_query(
        "messages", [("to", "==", "bob")], [OrderBy("createdAt", descending=True)], 50
    )

    client.collection.assert_called_once_with("messages")
    query.where.assert_called_once_with("to", "==", "bob")
    assert query.order_by.call_args_list[0].args == ("createdAt",)
    assert query.order_by.call_args_list[0].kwargs == {"direction": firestore.Query.DESCENDING}
    # id tiebreak follows the last ordering direction
    assert query.order_by.call_args_list[1].kwargs == {"direction": firestore.Query.DESCENDING}
    query.limit.assert_called_once_with(50)


async def test_subscribe_marshals_snapshots_onto_loop(firestore_store, query):
    watch = MagicMock()
    query.on_snapshot.return_value = watch

    subscription = firestore_store.subscribe("messages", order_by=[OrderBy("createdAt", descending=True)], limit=50)
    callback = query.on_snapshot.call_args.args[0]

    worker = threading.Thread(target=callback, args=([_snapshot("m1", {"text": "hi"})], [], None))
    worker.start()
    worker.join()
    await settle()

    [doc] = subscription.latest()
    assert doc.id == "m1"
    assert doc.data == {"text": "hi"}

    subscription.close()
    watch.unsubscribe.assert_called_once_with()


async def test_add_returns_store_assigned_id(firestore_store, query):
    query.add.return_value = (None, MagicMock(id="generated-id"))

    doc_id = await firestore_store.add("messages", {"text": "hi"})

    assert doc_id == "generated-id"


async def test_get_missing_document(firestore_store, query):
    missing = MagicMock()
    missing.exists = False
    query.document.return_value.get.return_value = missing

    assert await firestore_store.get("users", "nobody") is None


async def test_set_with_merge(firestore_store, query):
    await firestore_store.set("users", "u1", {"displayName": "A"}, merge=True)

    query.document.assert_called_once_with("u1")
    query.document.return_value.set.assert_called_once_with({"displayName": "A"}, merge=True)


@pytest.fixture
def offline_store():
    """Store over a real client; nothing here may reach the network."""
    client = firestore.Client(project="demo-project", credentials=AnonymousCredentials())
    return FirestoreDocumentStore(project_id="demo-project", client=client)


@pytest.mark.parametrize("doc_id", ["mr/x", "a/b/c", ""])
async def test_get_rejects_ids_that_are_not_single_segments(offline_store, doc_id):
    assert await offline_store.get("users", doc_id) is None


async def test_request_to_nickname_with_slash(offline_store, settings, alice):
    offline_store.query = AsyncMock(return_value=[StoredDocument("x-uid", {"nickname": "mr/x"})])
    offline_store.add = AsyncMock(return_value="req-1")
    handshake = ContactHandshake(offline_store, settings)

    request_id = await handshake.create_request(alice, "mr/x")

    assert request_id == "req-1"
    offline_store.query.assert_awaited_once_with("users", filters=[("nickname", "==", "mr/x")], limit=2)
    assert offline_store.add.await_args.args[1]["to"] == "x-uid"


async def test_unknown_nickname_with_slash_is_a_validation_error(offline_store, settings, alice):
    offline_store.query = AsyncMock(return_value=[])
    handshake = ContactHandshake(offline_store, settings)

    with pytest.raises(ValidationError):
        await handshake.create_request(alice, "a/b/c")


async def test_unreadable_snapshot_fails_the_subscription(firestore_store, query):
    watch = MagicMock()
    query.on_snapshot.return_value = watch
    subscription = firestore_store.subscribe("messages")
    callback = query.on_snapshot.call_args.args[0]

    broken = MagicMock(id="m1")
    broken.to_dict.side_effect = RuntimeError("corrupt document")
    worker = threading.Thread(target=callback, args=([broken], [], None))
    worker.start()
    worker.join()
    await settle()

    assert subscription.closed
    watch.unsubscribe.assert_called_once_with()
    with pytest.raises(RuntimeError):
        async for _ in subscription:
            pass


def test_service_account_credentials_are_used(monkeypatch):
    credentials = MagicMock()
    from_file = MagicMock(return_value=credentials)
    client_cls = MagicMock()
    monkeypatch.setattr("chatsync.services.store.service_account.Credentials.from_service_account_file", from_file)
    monkeypatch.setattr("chatsync.services.store.firestore.Client", client_cls)

    store = FirestoreDocumentStore(project_id="demo-project", service_account_file="/keys/sa.json")

    from_file.assert_called_once_with("/keys/sa.json")
    client_cls.assert_called_once_with(project="demo-project", database="(default)", credentials=credentials)
    assert store.db is client_cls.return_value


def test_default_credentials_without_key_file(monkeypatch):
    client_cls = MagicMock()
    monkeypatch.setattr("chatsync.services.store.firestore.Client", client_cls)

    FirestoreDocumentStore(project_id="demo-project")

    client_cls.assert_called_once_with(project="demo-project", database="(default)", credentials=None)
