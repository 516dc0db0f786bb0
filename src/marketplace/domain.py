"""Marketplace bounded context: Multi-Vendor Checkout, Fulfillment and Refunds.

Turns a mixed-vendor cart into one order per vendor, reserves stock against an
append-only ledger, allocates shipping across independently priced vendor
shipments, gates fulfillment on payment and keeps refunds consistent with
inventory and payment state. All aggregates are CQRS (state-stored) because
checkout must commit orders and reservations for every vendor in a single
unit of work.
"""

import structlog
from protean.domain import Domain

from marketplace.utils.logging import configure_logging

# Configure logging for the application
configure_logging()

logger = structlog.get_logger(__name__)

# Domain Composition Root
marketplace = Domain(name="marketplace")
