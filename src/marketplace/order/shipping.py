"""Vendor shipments: marking a vendor order (partly) shipped."""

import json
from dataclasses import dataclass

import structlog
from protean import handle
from protean.fields import Identifier, String, Text
from protean.utils.globals import current_domain

from marketplace.domain import marketplace
from marketplace.identity.caller import Caller
from marketplace.inventory.ledger import InventoryLedger
from marketplace.order.access import ensure_vendor_operator
from marketplace.order.order import Order
from marketplace.order.status import master_fulfillment_status
from marketplace.tracking.dispatch import ShipmentNotification, decide_notification
from marketplace.tracking.token import new_tracking_token

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ShipmentResult:
    order_id: str
    fulfillment_id: str
    duplicate: bool
    tracking_token: str | None
    token_issued: bool
    vendor_fulfillment_status: str
    order_status: str
    master_status: str
    notification: ShipmentNotification | None = None

    def as_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "fulfillment_id": self.fulfillment_id,
            "duplicate": self.duplicate,
            "tracking_token": self.tracking_token,
            "token_issued": self.token_issued,
            "vendor_fulfillment_status": self.vendor_fulfillment_status,
            "order_status": self.order_status,
            "master_status": self.master_status,
            "notification": self.notification.kind.value if self.notification else None,
        }


@marketplace.command(part_of="Order")
class MarkVendorShipped:
    order_id = Identifier(required=True)
    caller = Text()  # JSON caller identity
    carrier = String(required=True, max_length=100)
    tracking_number = String(required=True, max_length=255)
    tracking_url = String(max_length=1000)
    covered_lines = Text()  # JSON [{line_item_id, quantity}]; empty ships everything outstanding


def _covered(command) -> dict[str, int] | None:
    if not command.covered_lines:
        return None
    return {str(line["line_item_id"]): int(line["quantity"]) for line in json.loads(command.covered_lines)}


@marketplace.command_handler(part_of=Order)
class ShipmentHandler:
    @handle(MarkVendorShipped)
    def mark_vendor_shipped(self, command):
        caller = Caller.from_dict(json.loads(command.caller) if command.caller else None)
        order_repo = current_domain.repository_for(Order)
        order = order_repo.get(command.order_id)
        ensure_vendor_operator(caller, order, "ship")

        announced = {f.tracking_number for f in order.fulfillments or []}
        fulfillment, created = order.record_shipment(
            carrier=command.carrier,
            tracking_number=command.tracking_number,
            quantities=_covered(command),
            tracking_url=command.tracking_url,
            shipped_by=caller.identity_id,
        )

        # The order being shipped is already loaded; siblings come from storage
        siblings = [o for o in order_repo.for_group(order.order_group_id) if str(o.id) != str(order.id)]
        for sibling in siblings:
            announced.update(f.tracking_number for f in sibling.fulfillments or [])

        token_issued = False
        if created:
            ledger = InventoryLedger()
            for line_item_id, quantity in fulfillment.covered().items():
                ledger.commit(str(order.id), order.item(line_item_id).sku, quantity)
            ledger.flush()

            group_token = order.tracking_token or next((s.tracking_token for s in siblings if s.tracking_token), None)
            if group_token is None:
                group_token = new_tracking_token()
                token_issued = True
            order.issue_tracking_token(group_token)
            for sibling in siblings:
                if sibling.issue_tracking_token(group_token):
                    order_repo.add(sibling)
            order_repo.add(order)

        master_status = master_fulfillment_status(
            [order.vendor_fulfillment_status] + [s.vendor_fulfillment_status for s in siblings]
        )

        notification = None
        kind = decide_notification(created, token_issued, command.tracking_number, announced, master_status)
        if kind is not None and order.customer_email:
            notification = ShipmentNotification(
                kind=kind,
                recipient=order.customer_email,
                order_group_id=str(order.order_group_id),
                order_number=order.order_number,
                carrier=command.carrier,
                tracking_number=command.tracking_number,
                tracking_token=order.tracking_token,
                tracking_url=command.tracking_url,
            )

        logger.info(
            "Vendor shipment recorded" if created else "Vendor shipment already recorded",
            order_id=str(order.id),
            order_number=order.order_number,
            carrier=command.carrier,
            tracking_number=command.tracking_number,
            vendor_fulfillment_status=order.vendor_fulfillment_status,
            master_status=master_status,
        )
        return ShipmentResult(
            order_id=str(order.id),
            fulfillment_id=str(fulfillment.id),
            duplicate=not created,
            tracking_token=order.tracking_token,
            token_issued=token_issued,
            vendor_fulfillment_status=order.vendor_fulfillment_status,
            order_status=order.status,
            master_status=master_status,
            notification=notification,
        )
