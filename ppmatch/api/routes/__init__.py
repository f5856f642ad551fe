"""
PPMatch - API Routes
====================

Route modules for the FastAPI application.
"""

from ppmatch.api.routes.search import router as search_router
from ppmatch.api.routes.technologies import router as technologies_router
from ppmatch.api.routes.capabilities import router as capabilities_router
from ppmatch.api.routes.ingest import router as ingest_router
from ppmatch.api.routes.health import router as health_router

__all__ = [
    'search_router',
    'technologies_router',
    'capabilities_router',
    'ingest_router',
    'health_router'
]
