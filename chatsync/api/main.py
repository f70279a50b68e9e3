from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chatsync import __version__
from chatsync.config import get_settings
from chatsync.utils.logging import configure_logging
from .deps import get_chat_client
from .routers import messages, requests, session

settings = get_settings()
configure_logging(settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    provide_client = app.dependency_overrides.get(get_chat_client, get_chat_client)
    client = provide_client()
    await client.start()
    yield
    await client.stop()


app = FastAPI(
    title="Chat Client",
    description="Local API over the live message feed, contact requests and session state.",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(session.router)
app.include_router(messages.router)
app.include_router(requests.router)


@app.get("/health")
async def health():
    return {"status": "ok"}
