"""Contact request handshake: pending -> accepted | rejected, exactly once.

A request lives in a single document. Answering it is a compare-and-set on
that document's ``status`` field, so a request is resolved at most once and
readers never need to reconcile several documents for one request.

The handshake is advisory. Accepting a request does not change who may read
or write the global message feed.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator, List, Optional

from ..config import Settings, get_settings
from ..exceptions import RequestAlreadyResolved, StoreWriteError, ValidationError
from ..models.domain import ChatRequest, Identity, RequestStatus
from .store import SERVER_TIMESTAMP, DocumentStore, StoredDocument
from .subscription import Subscription


class ContactHandshake:
    def __init__(self, store: DocumentStore, settings: Optional[Settings] = None) -> None:
        self.store = store
        self.settings = settings or get_settings()
        self._subscription: Optional[Subscription[List[StoredDocument]]] = None

    @property
    def collection(self) -> str:
        return self.settings.requests_collection

    @property
    def is_open(self) -> bool:
        return self._subscription is not None and not self._subscription.closed

    # ------------------------------------------------------------------ #
    # Inbound pending requests
    # ------------------------------------------------------------------ #
    def open(self, identity: Identity) -> Subscription[List[StoredDocument]]:
        self.close()
        self._subscription = self.store.subscribe(
            self.collection,
            filters=[("to", "==", identity.uid), ("status", "==", RequestStatus.PENDING.value)],
        )
        logging.info(f"Listening for chat requests addressed to {identity.uid}")
        return self._subscription

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None

    @staticmethod
    def _to_requests(snapshot: List[StoredDocument]) -> List[ChatRequest]:
        requests = []
        for doc in snapshot:
            try:
                requests.append(ChatRequest(**doc.to_dict()))
            except ValueError as e:
                logging.warning(f"Skipping malformed chat request {doc.id}: {e}")
        return requests

    @property
    def pending(self) -> List[ChatRequest]:
        if self._subscription is None:
            return []
        return self._to_requests(self._subscription.latest([]))

    async def updates(self) -> AsyncIterator[List[ChatRequest]]:
        if self._subscription is None:
            return
        async for snapshot in self._subscription:
            yield self._to_requests(snapshot)

    # ------------------------------------------------------------------ #
    # Create
    # ------------------------------------------------------------------ #
    async def _resolve_target(self, target: str) -> str:
        """Resolve a uid or nickname to a uid; the uid wins on collision."""
        users = self.settings.users_collection
        # "/" is a path separator in document ids; such a target can only be a nickname
        if "/" not in target and await self.store.get(users, target) is not None:
            return target
        for field in ("nickname", "displayName"):
            matches = await self.store.query(users, filters=[(field, "==", target)], limit=2)
            if len(matches) == 1:
                return matches[0].id
            if len(matches) > 1:
                raise ValidationError(f"'{target}' matches several users; use their user id", field="target")
        raise ValidationError(f"No user found for '{target}'", field="target")

    async def create_request(self, identity: Identity, target: str) -> str:
        target = (target or "").strip()
        if not target:
            raise ValidationError("Enter a user id or nickname", field="target")

        try:
            to_uid = await self._resolve_target(target)
        except ValidationError:
            raise
        except Exception as e:
            logging.error(f"Error resolving chat request target '{target}': {e}", exc_info=True)
            raise StoreWriteError(str(e), "Could not send the chat request. Please try again.") from e
        if to_uid == identity.uid:
            raise ValidationError("You cannot send a chat request to yourself", field="target")

        request_data = {
            "from": identity.uid,
            "fromNickname": identity.label,
            "to": to_uid,
            "status": RequestStatus.PENDING.value,
            "createdAt": SERVER_TIMESTAMP,
        }
        try:
            request_id = await self.store.add(self.collection, request_data)
        except Exception as e:
            logging.error(f"Error creating chat request: {e}", exc_info=True)
            raise StoreWriteError(str(e), "Could not send the chat request. Please try again.") from e
        logging.info(f"Chat request {request_id}: {identity.uid} -> {to_uid}")
        return request_id

    # ------------------------------------------------------------------ #
    # Answer
    # ------------------------------------------------------------------ #
    async def answer_request(self, identity: Identity, request_id: str, accept: bool) -> RequestStatus:
        decision = RequestStatus.ACCEPTED if accept else RequestStatus.REJECTED

        try:
            doc = await self.store.get(self.collection, request_id)
        except Exception as e:
            logging.error(f"Error loading chat request {request_id}: {e}", exc_info=True)
            raise StoreWriteError(str(e), "Could not answer the chat request. Please try again.") from e
        if doc is None:
            raise ValidationError(f"Unknown chat request {request_id}", field="request_id")
        if doc.data.get("to") != identity.uid:
            raise ValidationError("This chat request is not addressed to you", field="request_id")

        try:
            result = await self.store.transition(
                self.collection,
                request_id,
                "status",
                RequestStatus.PENDING.value,
                {"status": decision.value, "updatedAt": SERVER_TIMESTAMP},
            )
        except Exception as e:
            logging.error(f"Error handling chat request {request_id}: {e}", exc_info=True)
            raise StoreWriteError(str(e), "Could not answer the chat request. Please try again.") from e

        if not result.exists:
            raise ValidationError(f"Unknown chat request {request_id}", field="request_id")
        if not result.applied:
            raise RequestAlreadyResolved(request_id, result.previous)
        logging.info(f"Chat request {request_id} {decision.value} by {identity.uid}")
        return decision

    async def contacts(self, identity: Identity) -> List[str]:
        """Uids this identity has an accepted request with, in either direction."""
        accepted = RequestStatus.ACCEPTED.value
        outgoing = await self.store.query(self.collection, filters=[("from", "==", identity.uid), ("status", "==", accepted)])
        incoming = await self.store.query(self.collection, filters=[("to", "==", identity.uid), ("status", "==", accepted)])
        uids = {doc.data["to"] for doc in outgoing} | {doc.data["from"] for doc in incoming}
        return sorted(uids)
