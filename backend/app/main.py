"""DrsClub Messaging Backend Application.

This is the main entry point for the DrsClub messaging service: real-time
point-to-point chat between connected doctors and vendors, with presence,
typing indicators and an HTTP read path for conversations and unread counts.

Modules:
    - chat: WebSocket live messaging, presence, and the chat read path
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.chat.hub import ChatHub, get_chat_hub, set_chat_hub
from app.chat.router import router as chat_router
from app.config import get_config

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence verbose third-party loggers.
for _noisy in (
    "uvicorn.access",
    "httpx",
    "httpcore",
    "multipart",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in drsclub.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    hub = ChatHub.from_config(config)
    set_chat_hub(hub)
    logger.info(
        f"Messaging ready on http://{config.server.host}:{config.server.port} "
        f"(heartbeat timeout {config.chat.heartbeat_timeout_seconds}s)"
    )

    yield  # Application runs here

    # Shutdown: presence and rooms are in-memory only, nothing to flush
    set_chat_hub(None)
    hub.close()
    logger.info("Application shutdown complete")


# Create FastAPI application with metadata
app = FastAPI(
    title="DrsClub Messaging API",
    description="Real-time messaging and presence for the DrsClub network",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().server.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT"],
    allow_headers=["*"],
)

# Register all routers
app.include_router(chat_router)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object with the number of online users.
    """
    hub = get_chat_hub()
    return {
        "status": "ok",
        "onlineUsers": len(hub.presence) if hub is not None else 0,
    }


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    config = get_config()
    uvicorn.run(
        "app.main:app",
        host=config.server.host,
        port=config.server.port,
        reload=False,
        ws_ping_interval=config.server.ws_ping_interval,
        ws_ping_timeout=config.server.ws_ping_timeout,
    )


if __name__ == "__main__":
    run()
