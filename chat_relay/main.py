"""
Main FastAPI application for the Chat Relay.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI, WebSocket, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

from chat_relay.core.config import config_loader, get_settings
from chat_relay.orchestration import (
    ConnectionRegistry,
    SessionRouter,
    RelayEngine,
    WebSocketHandler,
    ConnectionManager,
)


def configure_logging():
    settings = get_settings()
    handlers = [logging.StreamHandler()]
    if settings.log_file:
        handlers.append(logging.FileHandler(settings.log_file))

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


configure_logging()
logger = logging.getLogger(__name__)

# Global instances
connection_registry: Optional[ConnectionRegistry] = None
session_router: Optional[SessionRouter] = None
relay_engine: Optional[RelayEngine] = None
websocket_handler: Optional[WebSocketHandler] = None
connection_manager: Optional[ConnectionManager] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifecycle.
    Build the relay core on startup, clear all of its state on shutdown.
    """
    global connection_registry, session_router, relay_engine, websocket_handler, connection_manager

    logger.info("Starting Chat Relay...")

    config_loader.start_watching()
    relay_config = config_loader.get_relay_config()

    connection_registry = ConnectionRegistry()
    session_router = SessionRouter(connection_registry)
    connection_manager = ConnectionManager(queue_size=relay_config.outbound_queue_size)
    relay_engine = RelayEngine(
        router=session_router,
        transport=connection_manager,
        fanout_mode=relay_config.fanout_mode
    )
    websocket_handler = WebSocketHandler(
        registry=connection_registry,
        router=session_router,
        connection_manager=connection_manager,
        relay_engine=relay_engine,
        heartbeat_interval=relay_config.heartbeat_interval
    )

    logger.info(f"Relay started (fanout_mode={relay_config.fanout_mode})")

    yield  # Application runs

    logger.info("Shutting down relay...")

    connection_manager.disconnect_all()
    connection_registry.clear()
    session_router.clear()
    config_loader.stop_watching()

    websocket_handler = None
    relay_engine = None
    connection_manager = None

    logger.info("Relay shutdown complete")


settings = get_settings()
api_config = config_loader.get_api_config()

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Real-time chat message relay",
    lifespan=lifespan
)

# Configure CORS for the allowed origin(s)
app.add_middleware(
    CORSMiddleware,
    allow_origins=api_config.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    health_status = {
        "status": "healthy" if websocket_handler else "starting",
        "version": settings.app_version,
        "environment": settings.environment,
    }

    if connection_registry is not None and session_router is not None:
        health_status["active_connections"] = len(connection_registry)
        health_status["active_sessions"] = len(session_router)

    if relay_engine is not None:
        health_status["fanout_mode"] = relay_engine.fanout_mode

    return health_status


@app.get(f"{api_config.prefix}/info")
async def api_info():
    """Get API information."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
        "features": {
            "websocket": True,
            "websocket_path": "/ws/chat",
            "events": ["chat message", "join", "leave", "ping"],
            "fanout_mode": relay_engine.fanout_mode if relay_engine else None
        }
    }


@app.websocket("/ws/chat")
async def websocket_chat_endpoint(websocket: WebSocket, identity: Optional[str] = None):
    """
    WebSocket endpoint for real-time chat relay.

    Args:
        websocket: WebSocket connection
        identity: Optional opaque client identity, recorded but not validated
    """
    if not websocket_handler:
        await websocket.close(code=1011, reason="Service temporarily unavailable")
        return

    await websocket_handler.handle_connection(websocket, identity)


@app.get(f"{api_config.prefix}/sessions")
async def list_sessions():
    """List live sessions with their participant counts."""
    if session_router is None:
        raise HTTPException(status_code=503, detail="Relay unavailable")

    sessions = [
        {
            "session_id": session_id,
            "participants": len(session_router.participants_of(session_id))
        }
        for session_id in session_router.session_ids()
    ]
    return {"sessions": sessions, "count": len(sessions)}


@app.get(f"{api_config.prefix}/sessions/{{session_id}}")
async def get_session(session_id: str):
    """Get the participants of a session. Unknown sessions have none."""
    if session_router is None:
        raise HTTPException(status_code=503, detail="Relay unavailable")

    participants = sorted(session_router.participants_of(session_id))
    return {
        "session_id": session_id,
        "exists": session_router.has_session(session_id),
        "participants": participants,
        "count": len(participants)
    }


@app.exception_handler(404)
async def not_found_handler(request, exc):
    """Handle 404 errors."""
    return JSONResponse(
        status_code=404,
        content={"error": "Resource not found"}
    )


@app.exception_handler(500)
async def internal_error_handler(request, exc):
    """Handle 500 errors."""
    logger.error(f"Internal server error: {exc}")
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"}
    )


def run():
    """Console entry point: serve the relay with uvicorn."""
    uvicorn.run(
        "chat_relay.main:app",
        host=api_config.host,
        port=api_config.port,
        reload=settings.environment == "development" and settings.debug
    )


if __name__ == "__main__":
    run()
