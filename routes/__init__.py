"""
API route modules.

Each module defines routes for one domain area.
"""

from routes.customer_import import router as customer_import_router

__all__ = [
    "customer_import_router",
]
