"""
Circle Gateway main application.

Real-time relay for anonymous support circles: a waitroom that forms
groups at quorum, end-to-end encrypted group messaging, and the key
signaling clients need to set up their sessions.
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Header, HTTPException, Query, WebSocket, status
from fastapi.middleware.cors import CORSMiddleware

from shared.config.settings import settings
from shared.config.logging import mask_user_id, setup_logging, ws_gateway_logger as logger
from shared.infrastructure.correlation import CorrelationIdMiddleware
from shared.security.auth import get_bearer_token
from circle_gateway.connection_manager import ConnectionManager
from circle_gateway.components.auth.strategies import create_circle_auth_strategy
from circle_gateway.components.core.constants import DEFAULT_ALLOWED_ORIGINS
from circle_gateway.components.core.context import UserIdentity
from circle_gateway.components.core.exceptions import PersistenceError
from circle_gateway.components.endpoints.handlers import CircleEndpoint


# Global connection manager
manager = ConnectionManager()

# Same credentials as /ws/circle
circle_auth = create_circle_auth_strategy()


# =============================================================================
# Lifespan
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    On shutdown every connection is closed with 1001 and pending
    persistence writes are given a bounded time to finish.
    """
    setup_logging()
    logger.info(
        "Starting Circle Gateway",
        port=settings.ws_gateway_port,
        env=settings.environment,
        min_group_members=manager.waitroom.min_members,
    )

    for problem in settings.validate_production_secrets():
        logger.error("Configuration problem", problem=problem)

    yield

    logger.info("Shutting down Circle Gateway")
    try:
        await manager.shutdown()
    except Exception as e:
        logger.warning("Error during connection manager shutdown", error=str(e))


# =============================================================================
# FastAPI Application
# =============================================================================

app = FastAPI(
    title="Circle Gateway",
    description="Waitroom, encrypted group relay and key signaling for support circles",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS configuration
# Add HTTPS variants for production
DEFAULT_WS_ORIGINS = list(DEFAULT_ALLOWED_ORIGINS) + [
    origin.replace("http://", "https://") for origin in DEFAULT_ALLOWED_ORIGINS
]

ws_allowed_origins = (
    [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
    if settings.allowed_origins
    else DEFAULT_WS_ORIGINS
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ws_allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)
app.add_middleware(CorrelationIdMiddleware)


# =============================================================================
# HTTP Authentication
# =============================================================================


async def current_circle_user(
    authorization: str | None = Header(default=None, alias="Authorization"),
    token: str = Query(default="", description="mock_jwt_token_<name> or JWT"),
) -> UserIdentity:
    """
    FastAPI dependency resolving the caller from a bearer header or ?token=.

    Accepts exactly what the /ws/circle handshake accepts.
    """
    credential = get_bearer_token(authorization) if authorization else token
    result = await circle_auth.authenticate(credential)
    if not result.success:
        logger.warning("HTTP authentication failed", reason=result.audit_reason)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication failed",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return result.identity


# =============================================================================
# Health Check and Stats
# =============================================================================


@app.get("/ws/health")
def health_check():
    """Basic health check endpoint."""
    try:
        stats = manager.get_stats_sync()
    except Exception as e:
        logger.warning("Failed to get stats in health check", error=str(e))
        stats = {"error": "stats_unavailable"}
    return {
        "status": "healthy",
        "service": "circle-gateway",
        "version": app.version,
        "environment": settings.environment,
        **stats,
    }


@app.get("/ws/stats")
def circle_stats():
    """Waitroom and group counters."""
    return manager.get_public_stats()


@app.get("/ws/groups/{group_id}/messages")
async def group_messages(
    group_id: str,
    limit: int = Query(default=settings.message_history_limit, ge=1, le=500),
    user: UserIdentity = Depends(current_circle_user),
):
    """
    Stored encrypted history of a group, oldest first.

    Requires the same credential as /ws/circle. Ciphertexts are returned
    exactly as clients sent them.
    """
    try:
        messages = await manager.store.load_messages(group_id, limit)
    except PersistenceError as e:
        logger.warning(
            "Message history unavailable",
            group_id=group_id,
            user_id=mask_user_id(user.user_id),
            error=e.message,
        )
        raise HTTPException(status_code=503, detail="Message history unavailable")
    return {"groupId": group_id, "messages": messages}


# =============================================================================
# WebSocket Endpoints
# =============================================================================


@app.websocket("/ws/circle")
async def circle_websocket(
    websocket: WebSocket,
    token: str = Query(default="", description="mock_jwt_token_<name> or JWT"),
):
    """
    WebSocket endpoint for circle clients.

    A missing token is rejected with 4001 like any other bad credential.
    """
    endpoint = CircleEndpoint(websocket, manager, token, receive_timeout=settings.ws_receive_timeout)
    await endpoint.run()


# =============================================================================
# Development entry point
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "circle_gateway.main:app",
        host="0.0.0.0",
        port=settings.ws_gateway_port,
        reload=True,
    )
