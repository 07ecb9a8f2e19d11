"""Relay Backend Application.

This is the main entry point for the relay service: clients join named rooms
over a WebSocket, exchange short messages, typing signals and chunked file
transfers, and see how many people are in the room.

Modules:
    - chat: WebSocket relay engine (sessions, fan-out, history, presence, files)
    - rooms: room code creation over HTTP
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from relay import __version__
from relay.chat.engine import get_engine
from relay.chat.router import router as chat_router
from relay.config import AppConfig, get_config, set_config
from relay.rooms.router import router as rooms_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# uvicorn logs every WebSocket handshake at INFO
for _noisy in ("uvicorn.access", "websockets", "websockets.protocol"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    configured_level = getattr(logging, config.server.log_level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.server.log_level.upper())

    engine = get_engine()
    logger.info(
        f"Relay ready: history={config.chat.history_size} msgs/room, "
        f"chat limit={config.rate_limit.chat_limit}/{config.rate_limit.chat_window_seconds}s, "
        f"max file={config.files.max_file_size} bytes"
    )

    yield  # Application runs here

    # Shutdown
    live = len(engine.registry.connections)
    engine.registry.reset()
    logger.info(f"Application shutdown complete ({live} connections dropped)")


def create_app(config: Optional[AppConfig] = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        config: Configuration to install process-wide. Loaded from YAML
            when omitted.
    """
    if config is not None:
        set_config(config)
    config = get_config()

    app = FastAPI(
        title="Relay API",
        description="Room-scoped ephemeral real-time message relay",
        version=__version__,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.allowed_origins,
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    app.include_router(chat_router)
    app.include_router(rooms_router)

    @app.get("/ping")
    async def ping() -> dict:
        """Health check endpoint.

        Returns:
            dict: Status object indicating the server is running.
        """
        return {"status": "ok", "statusCode": 200, "message": "pong"}

    return app


app = create_app()


def run() -> None:
    """Serve the app with uvicorn using the configured host and port."""
    import uvicorn

    config = get_config()
    uvicorn.run(
        "relay.main:app",
        host=config.server.host,
        port=config.server.port,
        log_level=config.server.log_level,
    )
