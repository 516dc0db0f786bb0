"""Attaching a gateway payment intent to the orders of a checkout."""

from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from marketplace.domain import marketplace
from marketplace.order.order import Order


@marketplace.command(part_of="Order")
class AttachPaymentIntent:
    order_group_id = Identifier(required=True)
    payment_intent_id = String(required=True, max_length=255)


@marketplace.command_handler(part_of=Order)
class PaymentIntentHandler:
    @handle(AttachPaymentIntent)
    def attach_payment_intent(self, command):
        repo = current_domain.repository_for(Order)
        orders = repo.for_group(command.order_group_id)
        if not orders:
            raise ObjectNotFoundError({"_entity": f"Order group {command.order_group_id} not found"})
        for order in orders:
            order.attach_payment_intent(command.payment_intent_id)
            repo.add(order)
        return [str(o.id) for o in orders]
