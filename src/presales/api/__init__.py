"""Presales domain API package."""

from presales.api.routes import (
    checkout_router,
    maintenance_router,
    presale_router,
    seller_router,
    webhook_router,
)

__all__ = ["seller_router", "presale_router", "checkout_router", "webhook_router", "maintenance_router"]
