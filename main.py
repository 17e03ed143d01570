"""FastAPI app entry point for DX Party Server."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.events import router as events_router
from api.generation import router as generation_router
from api.lobby import router as lobby_router
from api.rounds import router as rounds_router
from config import (
    CORS_ORIGINS,
    GEMINI_API_KEY,
    IMAGE_CHUNK_SIZE,
    IMAGE_KEY_PREFIX,
    LOG_LEVEL,
    REDIS_URL,
    SESSION_KEY_PREFIX,
    SESSION_TTL_SECONDS,
)
from engine.errors import SessionError
from engine.imaging import ImageDecodeError
from engine.service import SessionService
from storage.kv import KeyValueStore, MemoryStore, RedisStore
from storage.payloads import ChunkedPayloadStore
from storage.repository import SessionRepository

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
# httpx logs every request line at INFO
logging.getLogger("httpx").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


def build_store() -> KeyValueStore:
    """Redis when REDIS_URL is set, otherwise a process-local store."""
    if REDIS_URL:
        logger.info("Using Redis session store")
        return RedisStore.from_url(REDIS_URL)
    logger.warning("REDIS_URL not set; sessions are kept in memory and lost on restart")
    return MemoryStore()


def build_service(store: KeyValueStore, **kwargs) -> SessionService:
    """Wire repository and payload store over one key/value store."""
    payloads = ChunkedPayloadStore(store, IMAGE_CHUNK_SIZE, SESSION_TTL_SECONDS, prefix=IMAGE_KEY_PREFIX)
    repository = SessionRepository(store, payloads, SESSION_TTL_SECONDS, prefix=SESSION_KEY_PREFIX)
    kwargs.setdefault("default_api_key", GEMINI_API_KEY)
    return SessionService(repository, **kwargs)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await app.state.store.close()


app = FastAPI(
    title="DX Party Server",
    description="Session server for a multiplayer prompt-and-paint party game",
    version="0.1.0",
    lifespan=lifespan,
)

app.state.store = build_store()
app.state.sessions = build_service(app.state.store)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SessionError)
async def session_error_handler(request: Request, exc: SessionError) -> JSONResponse:
    """Render engine errors as ``{"detail", "code"}`` with their HTTP status."""
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})


@app.exception_handler(ImageDecodeError)
async def image_error_handler(request: Request, exc: ImageDecodeError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc), "code": "invalid_image"})


app.include_router(lobby_router, prefix="/sessions", tags=["Lobby"])
app.include_router(rounds_router, prefix="/sessions", tags=["Rounds"])
app.include_router(generation_router, prefix="/sessions", tags=["Generation"])
app.include_router(events_router, prefix="/sessions", tags=["Events"])


@app.get("/")
def root() -> dict:
    """Root endpoint returning server info."""
    return {"name": "DX Party Server", "version": "0.1.0", "status": "running"}


@app.get("/health")
def health() -> dict:
    """Health check endpoint."""
    return {"healthy": True}
