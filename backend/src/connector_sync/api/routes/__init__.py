"""API route modules."""

from .connectors import router as connectors_router
from .webhooks import router as webhooks_router

__all__ = [
    "connectors_router",
    "webhooks_router",
]
