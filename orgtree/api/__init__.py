"""API routes package."""

from .routes_tree import router as tree_router

__all__ = [
    "tree_router",
]
