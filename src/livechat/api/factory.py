import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from src.livechat.api import admin_router, bot_router, session_router
from src.livechat.api import websocket_router
from src.livechat.chat.service_container import ServiceContainer

logger = logging.getLogger(__name__)


def create_app(cfg, services: Optional[ServiceContainer] = None) -> FastAPI:
    """Build the API; pass services to run against a prepared container."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Lifespan context manager for FastAPI application.
        Handles initialization and cleanup of service container.
        """
        app.state.startup_complete = False
        try:
            logger.info("Creating service container")
            service_container = services or ServiceContainer(cfg)
            await service_container.initialize()
        except Exception as e:
            logger.error(f"Error during application initialization: {e}", exc_info=True)
            raise
        app.state.service_container = service_container
        app.state.startup_complete = True
        logger.info("Service container initialized and ready")
        yield
        app.state.startup_complete = False
        await service_container.cleanup()
        logger.info("Service container cleaned up")

    app = FastAPI(
        title="Live Chat",
        description="Customer live chat with bot-to-human escalation.",
        version="1.0",
        docs_url="/chat/docs",
        openapi_url="/chat/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(cfg.api.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(session_router.router, prefix="/chat", tags=["chat"])
    app.include_router(bot_router.router, prefix="/bot", tags=["bot"])
    app.include_router(admin_router.router, prefix="/admin", tags=["admin"])
    app.include_router(websocket_router.router, prefix="/ws", tags=["websocket"])
    app.mount(
        cfg.chat.upload_url_prefix,
        StaticFiles(directory=Path(cfg.chat.upload_dir), check_dir=False),
        name="chat-files",
    )

    @app.get("/health")
    async def health_check():
        """Health check endpoint for the FastAPI server."""
        return {"status": "healthy"}

    return app
