"""Splitting checkout-level money across vendor orders.

Discounts come from the items when any cart item carries its own discount;
otherwise the checkout discount is pro-rated by each vendor's share of the
cart subtotal and then across the vendor's lines. Tax is always pro-rated.
Shipping uses each vendor's selected rate when rates were quoted, else the
checkout shipping amount is pro-rated. Every split is done in whole cents so
the vendor totals add up to the checkout total exactly.
"""

from dataclasses import dataclass
from decimal import Decimal

from protean.exceptions import ValidationError

from marketplace.checkout.cart import CartLine
from marketplace.shared.money import ZERO, prorate, quantize


@dataclass(frozen=True)
class LineAllocation:
    line: CartLine
    line_subtotal: Decimal
    discount: Decimal

    @property
    def line_total(self) -> Decimal:
        return self.line_subtotal - self.discount

    def as_order_line(self) -> dict:
        return {
            "listing_id": self.line.listing_id,
            "variant_id": self.line.variant_id,
            "sku": self.line.sku,
            "title": self.line.name,
            "quantity": self.line.quantity,
            "unit_price": self.line.unit_price,
            "line_subtotal": self.line_subtotal,
            "discount": self.discount,
            "line_total": self.line_total,
        }


@dataclass(frozen=True)
class VendorAllocation:
    vendor_id: str
    lines: list[LineAllocation]
    subtotal: Decimal
    discount: Decimal
    shipping: Decimal
    tax: Decimal

    @property
    def total(self) -> Decimal:
        return quantize(self.subtotal + self.shipping + self.tax - self.discount)

    def amounts(self) -> dict:
        return {
            "subtotal": self.subtotal,
            "discount": self.discount,
            "shipping": self.shipping,
            "tax": self.tax,
            "total": self.total,
        }


def uses_item_discounts(lines: list[CartLine]) -> bool:
    return any(line.discount is not None for line in lines)


def _line_discounts(vendor_lines: list[CartLine], vendor_discount: Decimal, item_level: bool) -> list[Decimal]:
    if item_level:
        return [line.discount or ZERO for line in vendor_lines]
    return prorate(vendor_discount, [line.line_subtotal for line in vendor_lines])


def allocate(
    groups: dict[str, list[CartLine]],
    discount_amount=ZERO,
    shipping_amount=ZERO,
    tax_amount=ZERO,
    vendor_shipping: dict[str, Decimal] | None = None,
) -> list[VendorAllocation]:
    vendor_ids = list(groups)
    subtotals = [quantize(sum((line.line_subtotal for line in groups[v]), ZERO)) for v in vendor_ids]
    all_lines = [line for v in vendor_ids for line in groups[v]]

    errors = []
    for line in all_lines:
        if line.discount is not None and (line.discount < 0 or line.discount > line.line_subtotal):
            errors.append(f"{line.name}: discount must be between 0 and the line subtotal")
    for name, amount in (("discount", discount_amount), ("shipping", shipping_amount), ("tax", tax_amount)):
        if quantize(amount) < 0:
            errors.append(f"{name} amount cannot be negative")
    if errors:
        raise ValidationError({"amounts": errors})

    item_level = uses_item_discounts(all_lines)
    if item_level:
        vendor_discounts = [quantize(sum((line.discount or ZERO for line in groups[v]), ZERO)) for v in vendor_ids]
    else:
        if quantize(discount_amount) > sum(subtotals, ZERO):
            raise ValidationError({"discount_amount": ["Discount cannot exceed the cart subtotal"]})
        vendor_discounts = prorate(discount_amount, subtotals)

    if vendor_shipping is not None:
        shipping = [quantize(vendor_shipping.get(v, ZERO)) for v in vendor_ids]
    else:
        shipping = prorate(shipping_amount, subtotals)
    taxes = prorate(tax_amount, subtotals)

    allocations = []
    for index, vendor_id in enumerate(vendor_ids):
        vendor_lines = groups[vendor_id]
        line_discounts = _line_discounts(vendor_lines, vendor_discounts[index], item_level)
        allocations.append(
            VendorAllocation(
                vendor_id=vendor_id,
                lines=[
                    LineAllocation(line=line, line_subtotal=line.line_subtotal, discount=discount)
                    for line, discount in zip(vendor_lines, line_discounts, strict=True)
                ],
                subtotal=subtotals[index],
                discount=vendor_discounts[index],
                shipping=shipping[index],
                tax=taxes[index],
            )
        )
    return allocations


def checkout_total(allocations: list[VendorAllocation]) -> Decimal:
    return quantize(sum((a.total for a in allocations), ZERO))
