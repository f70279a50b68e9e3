"""In-process DocumentStore used for local development and the test-suite.

Behaves like the remote store where the client can observe it: the store
assigns ids and timestamps, ordered queries break timestamp ties by id, and
change notifications arrive on a later loop iteration rather than inside
the write call.
"""

from __future__ import annotations

import asyncio
import copy
import datetime as _dt
import uuid
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .store import SERVER_TIMESTAMP, Filter, OrderBy, StoredDocument, Transition
from .subscription import Subscription


Clock = Callable[[], _dt.datetime]

_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "==": lambda a, b: a == b,
    "!=": lambda a, b: a != b,
    "in": lambda a, b: a in b,
    "<": lambda a, b: a is not None and a < b,
    "<=": lambda a, b: a is not None and a <= b,
    ">": lambda a, b: a is not None and a > b,
    ">=": lambda a, b: a is not None and a >= b,
}


@dataclass(eq=False)
class _Listener:
    collection: str
    filters: Tuple[Filter, ...]
    order_by: Tuple[OrderBy, ...]
    limit: Optional[int]
    subscription: Subscription
    loop: asyncio.AbstractEventLoop
    last: Optional[List[Tuple[str, Dict[str, Any]]]] = None


def _utcnow() -> _dt.datetime:
    return _dt.datetime.now(_dt.timezone.utc)


class InMemoryDocumentStore:
    def __init__(self, clock: Optional[Clock] = None) -> None:
        self._clock = clock or _utcnow
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = defaultdict(dict)
        self._listeners: List[_Listener] = []
        self._last_timestamp: Optional[_dt.datetime] = None
        self.writes: List[Tuple[str, str, str]] = []  # (op, collection, doc_id)

    # ------------------------------------------------------------------ #
    # Inspection helpers
    # ------------------------------------------------------------------ #
    def documents(self, collection: str) -> List[StoredDocument]:
        return [StoredDocument(doc_id, copy.deepcopy(data)) for doc_id, data in self._collections[collection].items()]

    def listener_count(self, collection: Optional[str] = None) -> int:
        return sum(1 for l in self._listeners if collection is None or l.collection == collection)

    # ------------------------------------------------------------------ #
    # Writes
    # ------------------------------------------------------------------ #
    def _server_now(self) -> _dt.datetime:
        now = self._clock()
        if self._last_timestamp is not None and now <= self._last_timestamp:
            now = self._last_timestamp + _dt.timedelta(microseconds=1)
        self._last_timestamp = now
        return now

    def _resolve(self, data: Dict[str, Any]) -> Dict[str, Any]:
        resolved = copy.deepcopy({k: v for k, v in data.items() if v is not SERVER_TIMESTAMP})
        if any(v is SERVER_TIMESTAMP for v in data.values()):
            now = self._server_now()
            for key, value in data.items():
                if value is SERVER_TIMESTAMP:
                    resolved[key] = now
        return resolved

    async def add(self, collection: str, data: Dict[str, Any]) -> str:
        doc_id = uuid.uuid4().hex[:20]
        self._collections[collection][doc_id] = self._resolve(data)
        self._record("add", collection, doc_id)
        return doc_id

    async def set(self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool = False) -> None:
        resolved = self._resolve(data)
        existing = self._collections[collection].get(doc_id)
        if merge and existing is not None:
            existing.update(resolved)
        else:
            self._collections[collection][doc_id] = resolved
        self._record("set", collection, doc_id)

    async def transition(
        self, collection: str, doc_id: str, field: str, expected: Any, updates: Dict[str, Any]
    ) -> Transition:
        existing = self._collections[collection].get(doc_id)
        if existing is None:
            return Transition(exists=False, applied=False)
        current = existing.get(field)
        if current != expected:
            return Transition(exists=True, applied=False, previous=current)
        existing.update(self._resolve(updates))
        self._record("update", collection, doc_id)
        return Transition(exists=True, applied=True, previous=current)

    def _record(self, op: str, collection: str, doc_id: str) -> None:
        self.writes.append((op, collection, doc_id))
        for listener in self._listeners:
            if listener.collection == collection:
                listener.loop.call_soon(self._refresh, listener)

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #
    async def get(self, collection: str, doc_id: str) -> Optional[StoredDocument]:
        data = self._collections[collection].get(doc_id)
        if data is None:
            return None
        return StoredDocument(doc_id, copy.deepcopy(data))

    async def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Sequence[OrderBy] = (),
        limit: Optional[int] = None,
    ) -> List[StoredDocument]:
        return self._run_query(collection, tuple(filters), tuple(order_by), limit)

    def _run_query(
        self,
        collection: str,
        filters: Tuple[Filter, ...],
        order_by: Tuple[OrderBy, ...],
        limit: Optional[int],
    ) -> List[StoredDocument]:
        rows = list(self._collections[collection].items())
        for field_path, op, value in filters:
            if op not in _OPERATORS:
                raise ValueError(f"Unsupported filter operator: {op}")
            compare = _OPERATORS[op]
            rows = [(i, d) for i, d in rows if field_path in d and compare(d[field_path], value)]
        # Ordered queries skip documents that lack the ordering field.
        for order in order_by:
            rows = [(i, d) for i, d in rows if d.get(order.field) is not None]
        # equal sort keys fall back to the document id
        rows.sort(key=lambda row: row[0], reverse=bool(order_by) and order_by[-1].descending)
        if order_by:
            for order in reversed(order_by):
                rows.sort(key=lambda row, f=order.field: row[1][f], reverse=order.descending)
        if limit:
            rows = rows[:limit]
        return [StoredDocument(i, copy.deepcopy(d)) for i, d in rows]

    def subscribe(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Sequence[OrderBy] = (),
        limit: Optional[int] = None,
    ) -> Subscription[List[StoredDocument]]:
        loop = asyncio.get_running_loop()
        listener_ref: Dict[str, _Listener] = {}

        def _release() -> None:
            listener = listener_ref.pop("listener", None)
            if listener is not None and listener in self._listeners:
                self._listeners.remove(listener)

        subscription: Subscription[List[StoredDocument]] = Subscription(
            on_close=_release, loop=loop, name=f"memory:{collection}"
        )
        listener = _Listener(collection, tuple(filters), tuple(order_by), limit, subscription, loop)
        listener_ref["listener"] = listener
        self._listeners.append(listener)
        # initial snapshot, like a freshly attached remote listener
        loop.call_soon(self._refresh, listener, True)
        return subscription

    def _refresh(self, listener: _Listener, initial: bool = False) -> None:
        if listener.subscription.closed:
            return
        try:
            docs = self._run_query(listener.collection, listener.filters, listener.order_by, listener.limit)
        except ValueError as e:
            listener.subscription.fail(e)
            return
        fingerprint = [(d.id, d.data) for d in docs]
        if not initial and fingerprint == listener.last:
            return
        listener.last = fingerprint
        listener.subscription.push(docs)
