import json
import logging
from typing import List

from fastapi import APIRouter, Depends, status
from fastapi.responses import StreamingResponse

from chatsync.api.deps import get_chat_client, to_http_exception
from chatsync.exceptions import ChatSyncError, NotAuthenticated
from chatsync.models.domain import Message, SendMessageRequest, CreatedResponse
from chatsync.services.client import ChatClient

router = APIRouter(prefix="/messages", tags=["messages"])


def _require_feed(client: ChatClient) -> None:
    if not client.feed.is_open:
        raise to_http_exception(NotAuthenticated())


@router.get("", response_model=List[Message])
async def list_messages(client: ChatClient = Depends(get_chat_client)):
    """Latest feed snapshot in chronological order."""
    _require_feed(client)
    return client.feed.messages


@router.post("", response_model=CreatedResponse, status_code=status.HTTP_202_ACCEPTED)
async def send_message(body: SendMessageRequest, client: ChatClient = Depends(get_chat_client)):
    """Appends a message. It shows up in the feed once the store echoes it back."""
    try:
        message_id = await client.send_message(body.text)
    except ChatSyncError as e:
        raise to_http_exception(e)
    return CreatedResponse(id=message_id)


@router.get("/stream")
async def stream_messages(client: ChatClient = Depends(get_chat_client)):
    """Server-sent events, one event per feed snapshot."""
    _require_feed(client)

    async def _events():
        try:
            async for view in client.feed.updates():
                payload = json.dumps([m.model_dump(mode="json") for m in view])
                yield f"data: {payload}\n\n"
        except Exception as e:
            logging.error(f"Feed stream failed: {e}", exc_info=True)
            yield f"event: error\ndata: {json.dumps({'message': 'The message feed was interrupted.'})}\n\n"
            return
        logging.info("Feed stream ended")

    return StreamingResponse(_events(), media_type="text/event-stream")
