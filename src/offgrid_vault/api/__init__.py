# Local API - FastAPI endpoints for a local vault UI
#
# Bound to localhost; every vault endpoint requires the per-process
# X-Session-Token.

from .main import app, start_api_server

__all__ = ["app", "start_api_server"]
