"""PaymentRecord aggregate: one row per captured provider payment event.

The provider's event identifier is stored as ``idempotency_key`` and is
unique, so a redelivered webhook can never create a second record.
"""

import json
from datetime import UTC, datetime

from protean.fields import DateTime, Float, Identifier, String, Text

from marketplace.domain import marketplace
from marketplace.shared.money import prorate, to_decimal, to_float


@marketplace.event(part_of="PaymentRecord")
class PaymentRecorded:
    __version__ = "v1"

    payment_record_id = Identifier(required=True)
    idempotency_key = String(required=True, max_length=255)
    order_group_id = Identifier(required=True)
    reference_id = String(required=True, max_length=255)
    amount = Float(required=True)
    fee_amount = Float(required=True)
    net_amount = Float(required=True)
    received_at = DateTime(required=True)


@marketplace.aggregate
class PaymentRecord:
    idempotency_key = String(required=True, max_length=255, unique=True)
    order_group_id = Identifier(required=True)
    reference_id = String(required=True, max_length=255)
    currency = String(max_length=3, default="USD")
    amount = Float(required=True)
    fee_amount = Float(default=0.0)
    net_amount = Float(required=True)
    allocations = Text()  # JSON [{order_id, vendor_id, amount, fee, net}]
    received_at = DateTime(required=True)

    @classmethod
    def capture(cls, idempotency_key, order_group_id, reference_id, amount, fee_amount, currency, orders):
        """Record a payment and split the platform fee across the vendor orders."""
        fees = prorate(fee_amount, [to_decimal(o.total_amount) for o in orders])
        allocations = [
            {
                "order_id": str(order.id),
                "vendor_id": str(order.vendor_id),
                "amount": order.total_amount,
                "fee": float(fee),
                "net": to_float(to_decimal(order.total_amount) - fee),
            }
            for order, fee in zip(orders, fees, strict=True)
        ]
        now = datetime.now(UTC)
        record = cls(
            idempotency_key=idempotency_key,
            order_group_id=order_group_id,
            reference_id=reference_id,
            currency=currency,
            amount=to_float(amount),
            fee_amount=to_float(fee_amount),
            net_amount=to_float(to_decimal(amount) - to_decimal(fee_amount)),
            allocations=json.dumps(allocations),
            received_at=now,
        )
        record.raise_(
            PaymentRecorded(
                payment_record_id=str(record.id),
                idempotency_key=idempotency_key,
                order_group_id=order_group_id,
                reference_id=reference_id,
                amount=record.amount,
                fee_amount=record.fee_amount,
                net_amount=record.net_amount,
                received_at=now,
            )
        )
        return record

    def allocation_for(self, order_id: str) -> dict | None:
        return next((a for a in json.loads(self.allocations or "[]") if a["order_id"] == str(order_id)), None)


@marketplace.repository(part_of=PaymentRecord)
class PaymentRecordRepository:
    def find_by_key(self, idempotency_key: str) -> PaymentRecord | None:
        rows = self._dao.query.filter(idempotency_key=idempotency_key).all().items
        return rows[0] if rows else None

    def for_group(self, order_group_id: str) -> list[PaymentRecord]:
        return self._dao.query.filter(order_group_id=order_group_id).all().items
