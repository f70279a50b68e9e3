import logging

from fastapi import APIRouter, Depends, HTTPException, status

from chatsync.api.deps import get_chat_client, to_http_exception
from chatsync.exceptions import ChatSyncError
from chatsync.models.domain import AnonymousLoginRequest, SessionView
from chatsync.services.client import ChatClient

router = APIRouter(prefix="/session", tags=["session"])


def _view(client: ChatClient) -> SessionView:
    session = client.session
    return SessionView(
        status=session.status.value,
        kind=session.kind.value if session.kind else None,
        identity=session.identity,
    )


@router.get("", response_model=SessionView)
async def get_session(client: ChatClient = Depends(get_chat_client)):
    """Current session state."""
    return _view(client)


@router.post("/federated", response_model=SessionView)
async def login_federated(client: ChatClient = Depends(get_chat_client)):
    try:
        await client.session.login_federated()
    except ChatSyncError as e:
        raise to_http_exception(e)
    return _view(client)


@router.post("/anonymous", response_model=SessionView, status_code=status.HTTP_201_CREATED)
async def login_anonymous(body: AnonymousLoginRequest, client: ChatClient = Depends(get_chat_client)):
    """Creates a guest identity that expires after 24 hours."""
    try:
        await client.session.login_anonymous(body.nickname)
    except ChatSyncError as e:
        raise to_http_exception(e)
    return _view(client)


@router.post("/bypass", response_model=SessionView)
async def bypass_auth(client: ChatClient = Depends(get_chat_client)):
    if client.session.bypass_auth() is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")
    return _view(client)


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
async def logout(client: ChatClient = Depends(get_chat_client)):
    try:
        await client.session.logout()
    except Exception as e:
        logging.error(f"Error during logout: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to log out.")
