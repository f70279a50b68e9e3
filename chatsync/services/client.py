"""Chat client: wires the session to the feed and handshake subscriptions."""

from __future__ import annotations

import logging
from typing import List, Optional

from ..exceptions import NotAuthenticated
from ..models.domain import Identity, RequestStatus
from .feed import MessageFeed
from .handshake import ContactHandshake
from .session import SessionManager


class ChatClient:
    """Opens both subscriptions when a session starts and releases them when it ends."""

    def __init__(self, session: SessionManager, feed: MessageFeed, handshake: ContactHandshake) -> None:
        self.session = session
        self.feed = feed
        self.handshake = handshake
        self._subscribed_uid: Optional[str] = None
        session.on_change(self._on_session_change)

    def _on_session_change(self, session: SessionManager) -> None:
        if session.is_authenticated:
            if session.identity.uid != self._subscribed_uid:
                self.feed.open()
                self.handshake.open(session.identity)
                self._subscribed_uid = session.identity.uid
        elif self._subscribed_uid is not None:
            self._release()

    def _release(self) -> None:
        self.feed.close()
        self.handshake.close()
        self._subscribed_uid = None

    def _require_identity(self) -> Identity:
        if not self.session.is_authenticated:
            raise NotAuthenticated()
        return self.session.identity

    async def start(self) -> None:
        await self.session.start()

    async def stop(self) -> None:
        self._release()
        await self.session.stop()
        logging.info("Chat client stopped")

    # ------------------------------------------------------------------ #
    # Composer operations
    # ------------------------------------------------------------------ #
    async def send_message(self, text: str) -> str:
        return await self.feed.send(self._require_identity(), text)

    async def request_contact(self, target: str) -> str:
        return await self.handshake.create_request(self._require_identity(), target)

    async def answer_request(self, request_id: str, accept: bool) -> RequestStatus:
        return await self.handshake.answer_request(self._require_identity(), request_id, accept)

    async def contacts(self) -> List[str]:
        return await self.handshake.contacts(self._require_identity())
