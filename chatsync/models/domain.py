import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class Identity(BaseModel):
    """An authenticated principal as mirrored into the ``users`` collection."""

    uid: str
    displayName: Optional[str] = None
    email: Optional[str] = None
    photoURL: Optional[str] = None
    isAnonymous: bool = False
    # ephemeral identities only
    nickname: Optional[str] = None
    createdAt: Optional[datetime.datetime] = None
    expiresAt: Optional[datetime.datetime] = None
    lastSeen: Optional[datetime.datetime] = None

    @property
    def label(self) -> str:
        """Name shown next to messages and requests authored by this identity."""
        if self.isAnonymous and self.nickname:
            return self.nickname
        return self.displayName or self.nickname or self.uid


class Message(BaseModel):
    id: str
    text: str
    uid: str
    displayName: Optional[str] = None
    photoURL: Optional[str] = None
    createdAt: Optional[datetime.datetime] = None

    class Config:
        json_encoders = {
            datetime.datetime: lambda dt: dt.isoformat() if dt else None
        }


class RequestStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class ChatRequest(BaseModel):
    id: str
    from_: str = Field(alias="from")
    fromNickname: Optional[str] = None
    to: str
    status: RequestStatus = RequestStatus.PENDING
    createdAt: Optional[datetime.datetime] = None
    updatedAt: Optional[datetime.datetime] = None

    class Config:
        populate_by_name = True
        json_encoders = {
            datetime.datetime: lambda dt: dt.isoformat() if dt else None
        }


# --- API I/O models ---
class AnonymousLoginRequest(BaseModel):
    nickname: str


class SendMessageRequest(BaseModel):
    text: str


class CreatedResponse(BaseModel):
    id: str


class NewChatRequest(BaseModel):
    target: str = Field(..., description="uid or nickname of the contact")


class SessionView(BaseModel):
    status: str
    kind: Optional[str] = None
    identity: Optional[Identity] = None


class ContactsResponse(BaseModel):
    contacts: List[str] = []
