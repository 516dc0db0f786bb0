"""Marketplace API package."""

from marketplace.api.errors import register_error_handlers
from marketplace.api.routes import (
    catalogue_router,
    checkout_router,
    inventory_router,
    order_router,
    payment_router,
    tracking_router,
)

routers = [
    catalogue_router,
    inventory_router,
    checkout_router,
    payment_router,
    order_router,
    tracking_router,
]

__all__ = [
    "catalogue_router",
    "checkout_router",
    "inventory_router",
    "order_router",
    "payment_router",
    "tracking_router",
    "register_error_handlers",
    "routers",
]
