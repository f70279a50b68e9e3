from typing import List

from fastapi import APIRouter, Depends, Path, status

from chatsync.api.deps import get_chat_client, to_http_exception
from chatsync.exceptions import ChatSyncError, NotAuthenticated
from chatsync.models.domain import ChatRequest, ContactsResponse, NewChatRequest, CreatedResponse
from chatsync.services.client import ChatClient

router = APIRouter(prefix="/requests", tags=["chat requests"])


@router.get("", response_model=List[ChatRequest], response_model_by_alias=True)
async def list_pending_requests(client: ChatClient = Depends(get_chat_client)):
    """Pending requests addressed to the current identity."""
    if not client.handshake.is_open:
        raise to_http_exception(NotAuthenticated())
    return client.handshake.pending


@router.post("", response_model=CreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_request(body: NewChatRequest, client: ChatClient = Depends(get_chat_client)):
    try:
        request_id = await client.request_contact(body.target)
    except ChatSyncError as e:
        raise to_http_exception(e)
    return CreatedResponse(id=request_id)


async def _answer(client: ChatClient, request_id: str, accept: bool) -> dict:
    try:
        decision = await client.answer_request(request_id, accept)
    except ChatSyncError as e:
        raise to_http_exception(e)
    return {"id": request_id, "status": decision.value}


@router.post("/{request_id}/accept")
async def accept_request(
    request_id: str = Path(..., title="The ID of the chat request"),
    client: ChatClient = Depends(get_chat_client),
):
    return await _answer(client, request_id, True)


@router.post("/{request_id}/reject")
async def reject_request(
    request_id: str = Path(..., title="The ID of the chat request"),
    client: ChatClient = Depends(get_chat_client),
):
    return await _answer(client, request_id, False)


@router.get("/contacts", response_model=ContactsResponse)
async def list_contacts(client: ChatClient = Depends(get_chat_client)):
    """Accepted contacts. Informational only: the feed is shared by everyone."""
    try:
        return ContactsResponse(contacts=await client.contacts())
    except ChatSyncError as e:
        raise to_http_exception(e)
