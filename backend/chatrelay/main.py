"""Chat relay application.

This is the main entry point for the chat relay service: clients join named
rooms over a WebSocket, exchange messages, see presence and typing
indicators, and page back through persisted room history.

Modules:
    - chat: room session coordinator, WebSocket and history endpoints
    - history: DuckDB message log
    - auth: optional token verification
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chatrelay import __version__
from chatrelay.chat.router import router as chat_router
from chatrelay.config import LoggingSettings, get_config
from chatrelay.history.service import MessageLogService


def configure_logging(settings: LoggingSettings) -> None:
    """Set up root logging from the `logging` section of the settings."""
    logging.basicConfig(
        level=getattr(logging, settings.level.upper()),
        format=settings.format,
    )

    # Silence verbose third-party loggers.
    for noisy in (
        "uvicorn.access",
        "httpx",
        "httpcore",
        "websockets",
    ):
        logging.getLogger(noisy).setLevel(logging.WARNING)


configure_logging(get_config().logging)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in chatrelay.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    # Open the message log now so a bad db_path fails at startup, not on first message
    MessageLogService.get_instance(config.storage.db_path)
    logger.info("Message log ready at %s", config.storage.db_path)

    yield  # Application runs here

    # Shutdown
    MessageLogService.reset_instance()
    logger.info("Application shutdown complete")


# Create FastAPI application with metadata
app = FastAPI(
    title="Chat Relay API",
    description="Room-based real-time chat relay",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().server.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(chat_router)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object indicating the server is running.
    """
    return {"status": "ok"}
