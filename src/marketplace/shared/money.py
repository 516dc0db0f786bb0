"""Fixed-point money helpers.

Amounts are computed as ``Decimal`` and rounded half-up to cents; aggregates
store the rounded result in ``Float`` fields.
"""

from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_decimal(value) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def quantize(value) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_float(value) -> float:
    return float(quantize(value))


def prorate(amount, weights) -> list[Decimal]:
    """Split ``amount`` across ``weights`` so the parts sum to it exactly.

    Works in whole cents with the largest-remainder method. When every weight
    is zero the amount is split evenly.
    """
    weights = [to_decimal(w) for w in weights]
    if not weights:
        return []

    total_cents = int(quantize(amount) * 100)
    weight_sum = sum(weights)
    if weight_sum <= 0:
        weights = [Decimal(1)] * len(weights)
        weight_sum = Decimal(len(weights))

    raw = [Decimal(total_cents) * w / weight_sum for w in weights]
    cents = [int(r.to_integral_value(rounding=ROUND_FLOOR)) for r in raw]

    leftover = total_cents - sum(cents)
    by_remainder = sorted(range(len(raw)), key=lambda i: (raw[i] - cents[i], -i), reverse=True)
    for i in by_remainder[:leftover]:
        cents[i] += 1

    return [quantize(Decimal(c) / 100) for c in cents]
