"""livechat backend application.

This is the main entry point for the livechat backend service: a real-time
chat where authenticated users exchange messages over WebSockets, with
presence, typing indicators and on-demand history.

Modules:
    - chat: WebSocket endpoint, session registry and broadcast coordinator
    - messages: DuckDB message store and bulk history deletion
    - auth: username/password accounts and JWT verification
    - users: profile endpoints for the current user

Run with:
    uvicorn livechat.main:app --port 4000
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from livechat.auth.router import router as auth_router
from livechat.auth.service import AuthService, set_auth_service
from livechat.chat.manager import BroadcastCoordinator, set_coordinator
from livechat.chat.router import router as chat_router
from livechat.config import get_config
from livechat.exceptions import (
    AuthenticationError,
    ChatError,
    PersistenceError,
    ValidationError,
)
from livechat.messages.router import router as messages_router
from livechat.messages.service import MessageStore
from livechat.users.router import router as users_router
from livechat.users.service import UserStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence verbose third-party loggers.
for _noisy in (
    "httpx",
    "httpcore",
    "uvicorn.access",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    message_store = MessageStore.get_instance(config.storage.db_path)
    user_store = UserStore.get_instance(config.storage.db_path)
    auth_service = AuthService(user_store, config)
    set_auth_service(auth_service)
    coordinator = BroadcastCoordinator(message_store, auth_service, config.chat)
    set_coordinator(coordinator)
    logger.info(
        "Chat ready on http://%s:%s (db=%s)",
        config.server.host,
        config.server.port,
        config.storage.db_path,
    )

    yield  # Application runs here

    # Shutdown
    await coordinator.drain()
    set_coordinator(None)
    set_auth_service(None)
    MessageStore.reset_instance()
    UserStore.reset_instance()
    logger.info("Application shutdown complete")


app = FastAPI(
    title="livechat API",
    description="Real-time chat with presence, typing indicators and history",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().server.allowed_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Error handlers
# =============================================================================


def _error_response(status_code: int, exc: ChatError) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"message": exc.message, "code": exc.__class__.__name__},
    )


@app.exception_handler(AuthenticationError)
async def authentication_error_handler(request: Request, exc: AuthenticationError):
    logger.warning("Authentication error on %s: %s", request.url.path, exc.message)
    return _error_response(401, exc)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    logger.info("Rejected request on %s: %s", request.url.path, exc.message)
    return _error_response(400, exc)


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError):
    logger.error("Persistence error on %s: %s", request.url.path, exc.message)
    return _error_response(500, exc)


@app.exception_handler(ChatError)
async def chat_error_handler(request: Request, exc: ChatError):
    logger.error("Unhandled chat error on %s: %s", request.url.path, exc.message)
    return _error_response(500, exc)


# Register all routers
app.include_router(chat_router)
app.include_router(auth_router)
app.include_router(users_router)
app.include_router(messages_router)


@app.get("/", response_class=PlainTextResponse)
async def root() -> str:
    return "Server is running successfully!"


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object indicating the server is running.
    """
    return {"status": "ok"}


@app.get("/api/stats")
def stats() -> dict:
    """Total registered users and stored messages."""
    config = get_config()
    return {
        "users": UserStore.get_instance(config.storage.db_path).count(),
        "chats": MessageStore.get_instance(config.storage.db_path).count(),
    }
