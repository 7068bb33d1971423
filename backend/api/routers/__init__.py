"""
API Routers package.

Each module contains a FastAPI router for a specific domain.
"""

from .lca import router as lca_router

__all__ = [
    "lca_router",
]
