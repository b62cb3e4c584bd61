"""
VRroom /v1 Gateway - the resource-oriented HTTP surface.

This gateway:
1. Serves /v1/{resource}/{action} endpoints with pydantic request models
2. Shares the Services graph (store, tokens, visibility) with the flat surface
3. Renders domain errors with the same envelope as the flat surface
"""

from .app import create_app
from .config import GatewaySettings
from .routes import router

__all__ = ["GatewaySettings", "create_app", "router"]
