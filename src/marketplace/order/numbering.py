"""Human-readable order numbers, drawn from a persisted counter."""

from protean.fields import Integer, String

from marketplace.domain import marketplace

DEFAULT_PREFIX = "MKT"
FIRST_NUMBER = 1001


@marketplace.aggregate
class OrderNumberSequence:
    prefix = String(required=True, max_length=10)
    last_value = Integer(default=FIRST_NUMBER - 1)

    def next_number(self) -> str:
        self.last_value += 1
        return f"{self.prefix}-{self.last_value}"


@marketplace.repository(part_of=OrderNumberSequence)
class OrderNumberSequenceRepository:
    def for_prefix(self, prefix: str = DEFAULT_PREFIX) -> OrderNumberSequence:
        rows = self._dao.query.filter(prefix=prefix).all().items
        if rows:
            return self.get(rows[0].id)
        return OrderNumberSequence(prefix=prefix)
