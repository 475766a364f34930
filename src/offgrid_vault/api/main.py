# Local API - FastAPI application
#
# Serves the vault routes on localhost for a local UI. On startup a session
# token is generated; on shutdown the vault is locked so pending file saves
# are flushed and the key is wiped.

import logging

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..core import EventSeverity, EventType, get_audit_logger
from .security import initialize_session_token, is_initialized
from .vault_routes import get_lifecycle, router as vault_router

logger = logging.getLogger(__name__)

app = FastAPI(
    title="OffGrid Vault API",
    description="Local encrypted credential vault",
    version=__version__,
)

# Local UI origins only
_allowed_origins = [
    "http://localhost:3000", "http://127.0.0.1:3000",
    "http://localhost:5173", "http://127.0.0.1:5173",
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(vault_router)


@app.on_event("startup")
async def startup_event():
    """Set the session token if the launcher has not already done so."""
    if not is_initialized():
        initialize_session_token()
    get_audit_logger().log_event(
        event_type=EventType.SYSTEM_START,
        severity=EventSeverity.INFO,
        message="OffGrid Vault API starting",
        details={"version": __version__},
    )


@app.on_event("shutdown")
async def shutdown_event():
    """Lock the vault on shutdown."""
    get_lifecycle().lock()
    get_audit_logger().log_event(
        event_type=EventType.SYSTEM_STOP,
        severity=EventSeverity.INFO,
        message="OffGrid Vault API shutting down",
    )


@app.get("/api/health")
async def health():
    """Liveness probe (no token required, reveals nothing about the vault)."""
    return {"status": "ok", "version": __version__}


def start_api_server(host: str = "127.0.0.1", port: int = 8765):
    """
    Start the API server.

    Args:
        host: Host to bind to (default: localhost only)
        port: Port to listen on
    """
    uvicorn.run(app, host=host, port=port, log_level="info")
