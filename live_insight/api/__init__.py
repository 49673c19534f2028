"""
API layer for the live insight engine.
"""

from live_insight.api.routes import router
from live_insight.api.websocket import router as ws_router

__all__ = ["router", "ws_router"]
