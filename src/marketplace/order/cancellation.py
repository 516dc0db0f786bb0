"""Cancelling, archiving and flagging vendor orders."""

import json

import structlog
from protean import handle
from protean.fields import Identifier, String, Text
from protean.utils.globals import current_domain

from marketplace.domain import marketplace
from marketplace.exceptions import AuthorizationError
from marketplace.identity.caller import Caller
from marketplace.inventory.ledger import InventoryLedger
from marketplace.order.access import ensure_vendor_operator, is_buyer, operates
from marketplace.order.order import Order, WorkflowStatus

logger = structlog.get_logger(__name__)


@marketplace.command(part_of="Order")
class CancelOrder:
    order_id = Identifier(required=True)
    caller = Text()
    reason = String(max_length=500)


@marketplace.command(part_of="Order")
class ArchiveOrder:
    order_id = Identifier(required=True)
    caller = Text()


@marketplace.command(part_of="Order")
class SetWorkflowStatus:
    order_id = Identifier(required=True)
    caller = Text()
    workflow_status = String(required=True, choices=WorkflowStatus)
    hold_reason = String(max_length=500)


def _caller(command) -> Caller:
    return Caller.from_dict(json.loads(command.caller) if command.caller else None)


@marketplace.command_handler(part_of=Order)
class OrderLifecycleHandler:
    @handle(CancelOrder)
    def cancel_order(self, command):
        caller = _caller(command)
        order_repo = current_domain.repository_for(Order)
        order = order_repo.get(command.order_id)
        if not (caller.is_admin or is_buyer(caller, order) or operates(caller, order)):
            raise AuthorizationError({"order_id": [f"Not allowed to cancel order {order.order_number}"]})

        to_release = order.cancel(command.reason)

        ledger = InventoryLedger()
        released = ledger.release_order(str(order.id), to_release.keys())
        ledger.flush()
        order_repo.add(order)

        logger.info(
            "Order canceled",
            order_id=str(order.id),
            order_number=order.order_number,
            released=released,
        )
        return released

    @handle(ArchiveOrder)
    def archive_order(self, command):
        order_repo = current_domain.repository_for(Order)
        order = order_repo.get(command.order_id)
        ensure_vendor_operator(_caller(command), order, "archive")

        order.archive()
        order_repo.add(order)
        logger.info("Order archived", order_id=str(order.id), order_number=order.order_number)
        return order.status

    @handle(SetWorkflowStatus)
    def set_workflow_status(self, command):
        order_repo = current_domain.repository_for(Order)
        order = order_repo.get(command.order_id)
        ensure_vendor_operator(_caller(command), order, "flag")

        if order.set_workflow_status(command.workflow_status, command.hold_reason):
            order_repo.add(order)
            logger.info(
                "Order workflow status changed",
                order_id=str(order.id),
                workflow_status=order.workflow_status,
                hold_reason=order.hold_reason,
            )
        return order.workflow_status
