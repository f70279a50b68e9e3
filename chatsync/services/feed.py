"""Live message feed.

Mirrors the newest ``feed_limit`` documents of the global message
collection. Every store snapshot replaces the local view wholesale. Sends are
never inserted locally: a message becomes visible only once the store echoes
it back through the subscription.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator, List, Optional

from ..config import Settings, get_settings
from ..exceptions import StoreWriteError, ValidationError
from ..models.domain import Identity, Message
from .store import SERVER_TIMESTAMP, DocumentStore, OrderBy, StoredDocument
from .subscription import Subscription


class MessageFeed:
    def __init__(self, store: DocumentStore, settings: Optional[Settings] = None) -> None:
        self.store = store
        self.settings = settings or get_settings()
        self._subscription: Optional[Subscription[List[StoredDocument]]] = None

    @property
    def is_open(self) -> bool:
        return self._subscription is not None and not self._subscription.closed

    def open(self) -> Subscription[List[StoredDocument]]:
        """Start (or restart) the standing query on the newest messages."""
        self.close()
        self._subscription = self.store.subscribe(
            self.settings.messages_collection,
            order_by=[OrderBy("createdAt", descending=True)],
            limit=self.settings.feed_limit,
        )
        logging.info(f"Message feed opened (limit={self.settings.feed_limit})")
        return self._subscription

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
            logging.info("Message feed closed")

    # ------------------------------------------------------------------ #
    # View
    # ------------------------------------------------------------------ #
    def _to_view(self, snapshot: List[StoredDocument]) -> List[Message]:
        """Newest-first snapshot -> chronological list of at most ``feed_limit`` messages."""
        messages = []
        for doc in snapshot[: self.settings.feed_limit]:
            try:
                messages.append(Message(**doc.to_dict()))
            except ValueError as e:
                logging.warning(f"Skipping malformed message {doc.id}: {e}")
        messages.reverse()
        return messages

    @property
    def messages(self) -> List[Message]:
        if self._subscription is None:
            return []
        return self._to_view(self._subscription.latest([]))

    async def updates(self) -> AsyncIterator[List[Message]]:
        """Stream of chronological views, newest snapshot wins."""
        if self._subscription is None:
            return
        async for snapshot in self._subscription:
            yield self._to_view(snapshot)

    # ------------------------------------------------------------------ #
    # Send
    # ------------------------------------------------------------------ #
    async def send(self, identity: Identity, text: str) -> str:
        if not text or not text.strip():
            raise ValidationError("Message text must not be empty", field="text")

        message_data = {
            "text": text,
            "createdAt": SERVER_TIMESTAMP,
            "uid": identity.uid,
            "photoURL": identity.photoURL or self.settings.placeholder_photo_url,
            "displayName": identity.label,
        }
        try:
            message_id = await self.store.add(self.settings.messages_collection, message_data)
        except Exception as e:
            logging.error(f"Error sending message: {e}", exc_info=True)
            raise StoreWriteError(str(e), "Your message could not be sent. Please try again.") from e
        logging.debug(f"Message {message_id} sent by {identity.uid}")
        return message_id
