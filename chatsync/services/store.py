"""Document store contract and the Firestore-backed implementation."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

import anyio
from google.cloud import firestore
from google.cloud.firestore import SERVER_TIMESTAMP
from google.cloud.firestore_v1.field_path import FieldPath
from google.oauth2 import service_account

from .subscription import Subscription

__all__ = [
    "SERVER_TIMESTAMP",
    "DocumentStore",
    "FirestoreDocumentStore",
    "Filter",
    "OrderBy",
    "StoredDocument",
    "Transition",
]

# (field, operator, value), e.g. ("to", "==", uid)
Filter = Tuple[str, str, Any]


@dataclass(frozen=True)
class OrderBy:
    field: str
    descending: bool = False


@dataclass
class StoredDocument:
    id: str
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, **self.data}


@dataclass(frozen=True)
class Transition:
    """Outcome of a compare-and-set on a single field."""

    exists: bool
    applied: bool
    previous: Any = None


class DocumentStore(Protocol):
    async def add(self, collection: str, data: Dict[str, Any]) -> str: ...

    async def set(self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool = False) -> None: ...

    async def get(self, collection: str, doc_id: str) -> Optional[StoredDocument]: ...

    async def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Sequence[OrderBy] = (),
        limit: Optional[int] = None,
    ) -> List[StoredDocument]: ...

    async def transition(
        self, collection: str, doc_id: str, field: str, expected: Any, updates: Dict[str, Any]
    ) -> Transition: ...

    def subscribe(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Sequence[OrderBy] = (),
        limit: Optional[int] = None,
    ) -> Subscription[List[StoredDocument]]: ...


class FirestoreDocumentStore:
    """DocumentStore on top of the (blocking) Firestore client.

    Blocking calls run in a worker thread; snapshot listeners fire on
    Firestore's watch thread and are handed back to the event loop through
    the subscription.
    """

    def __init__(
        self,
        project_id: str,
        db_name: str = "(default)",
        client: Optional[firestore.Client] = None,
        service_account_file: Optional[str] = None,
    ) -> None:
        if client is None:
            credentials = None
            if service_account_file:
                credentials = service_account.Credentials.from_service_account_file(service_account_file)
                logging.info(f"Using service account credentials from {service_account_file}")
            client = firestore.Client(project=project_id, database=db_name, credentials=credentials)
        self.db = client
        logging.info(f"FirestoreDocumentStore initialized for project '{project_id}', database '{db_name}'")

    def _build_query(
        self,
        collection: str,
        filters: Sequence[Filter],
        order_by: Sequence[OrderBy],
        limit: Optional[int],
    ):
        query = self.db.collection(collection)
        for field_path, op, value in filters:
            query = query.where(field_path, op, value)
        direction = firestore.Query.ASCENDING
        for order in order_by:
            direction = firestore.Query.DESCENDING if order.descending else firestore.Query.ASCENDING
            query = query.order_by(order.field, direction=direction)
        if order_by:
            # equal timestamps fall back to the document id
            query = query.order_by(FieldPath.document_id(), direction=direction)
        if limit:
            query = query.limit(limit)
        return query

    @staticmethod
    def _to_stored(snapshot) -> StoredDocument:
        return StoredDocument(id=snapshot.id, data=snapshot.to_dict() or {})

    async def add(self, collection: str, data: Dict[str, Any]) -> str:
        def _add() -> str:
            _, doc_ref = self.db.collection(collection).add(data)
            return doc_ref.id

        doc_id = await anyio.to_thread.run_sync(_add)
        logging.debug(f"Added document {collection}/{doc_id}")
        return doc_id

    async def set(self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool = False) -> None:
        doc_ref = self.db.collection(collection).document(doc_id)
        await anyio.to_thread.run_sync(lambda: doc_ref.set(data, merge=merge))
        logging.debug(f"Set document {collection}/{doc_id} (merge={merge})")

    async def get(self, collection: str, doc_id: str) -> Optional[StoredDocument]:
        if not doc_id or "/" in doc_id:
            # not a single document id; would address a nested path or raise
            return None
        doc_ref = self.db.collection(collection).document(doc_id)
        snapshot = await anyio.to_thread.run_sync(doc_ref.get)
        if not snapshot.exists:
            return None
        return self._to_stored(snapshot)

    async def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Sequence[OrderBy] = (),
        limit: Optional[int] = None,
    ) -> List[StoredDocument]:
        query = self._build_query(collection, filters, order_by, limit)
        snapshots = await anyio.to_thread.run_sync(lambda: list(query.stream()))
        return [self._to_stored(s) for s in snapshots]

    async def transition(
        self, collection: str, doc_id: str, field: str, expected: Any, updates: Dict[str, Any]
    ) -> Transition:
        doc_ref = self.db.collection(collection).document(doc_id)

        @firestore.transactional
        def _apply(transaction) -> Transition:
            snapshot = doc_ref.get(transaction=transaction)
            if not snapshot.exists:
                return Transition(exists=False, applied=False)
            current = (snapshot.to_dict() or {}).get(field)
            if current != expected:
                return Transition(exists=True, applied=False, previous=current)
            transaction.update(doc_ref, updates)
            return Transition(exists=True, applied=True, previous=current)

        return await anyio.to_thread.run_sync(lambda: _apply(self.db.transaction()))

    def subscribe(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Sequence[OrderBy] = (),
        limit: Optional[int] = None,
    ) -> Subscription[List[StoredDocument]]:
        query = self._build_query(collection, filters, order_by, limit)
        watch_holder: Dict[str, Any] = {}

        def _release() -> None:
            watch = watch_holder.pop("watch", None)
            if watch is not None:
                watch.unsubscribe()

        subscription: Subscription[List[StoredDocument]] = Subscription(
            on_close=_release, name=f"firestore:{collection}"
        )

        def _on_snapshot(docs, changes, read_time) -> None:
            try:
                stored = [self._to_stored(d) for d in docs]
            except Exception as e:
                subscription.fail_threadsafe(e)
                return
            subscription.push_threadsafe(stored)

        watch_holder["watch"] = query.on_snapshot(_on_snapshot)
        logging.info(f"Subscribed to '{collection}' (filters={list(filters)}, limit={limit})")
        return subscription
