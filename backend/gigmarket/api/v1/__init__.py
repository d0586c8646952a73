"""
API v1 package initialization.

This module exposes the v1 routers of the marketplace order service.
"""

from gigmarket.api.v1.orders import router as orders_router

__all__ = ["orders_router"]
