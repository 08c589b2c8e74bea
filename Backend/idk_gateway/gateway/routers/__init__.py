"""
Gateway Routers Package.

This module provides the FastAPI routers for the gateway:
- Data Plane: OpenAI-compatible API endpoints (/v1/*)
- Health: liveness endpoint (/health)

Usage:
    from idk_gateway.gateway.routers import openai_router, health_router

    app.include_router(openai_router)
    app.include_router(health_router)
"""

from idk_gateway.gateway.routers.openai_compat import health_router
from idk_gateway.gateway.routers.openai_compat import router as openai_router

__all__ = [
    "openai_router",
    "health_router",
]
