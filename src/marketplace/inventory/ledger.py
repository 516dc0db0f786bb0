"""InventoryLedger: the stock side of a single unit of work.

Command handlers that touch stock (checkout, shipment, cancellation, refund)
go through one ``InventoryLedger``. It loads each stock unit once, remembers
the ``ledger_version`` it saw, applies entries in memory and only writes after
``verify()`` has confirmed nobody else appended to those units in the
meantime. A conflict surfaces as ``InsufficientStock`` so the caller can
re-quote and retry; nothing is persisted for the losing writer.
"""

from collections import OrderedDict

import structlog
from protean.exceptions import ValidationError
from protean.utils.globals import current_domain

from marketplace.exceptions import InsufficientStock
from marketplace.inventory.stock import StockUnit

logger = structlog.get_logger(__name__)


class InventoryLedger:
    def __init__(self):
        self._repo = current_domain.repository_for(StockUnit)
        self._units: "OrderedDict[str, StockUnit]" = OrderedDict()
        self._loaded_versions: dict[str, int] = {}
        self._pending: dict[str, int] = {}

    def unit(self, sku: str) -> StockUnit:
        if sku not in self._units:
            unit = self._repo.find_by_sku(sku)
            if unit is None:
                raise ValidationError({"sku": [f"No stock is tracked for {sku}"]})
            self._units[sku] = unit
            self._loaded_versions[sku] = unit.ledger_version
        return self._units[sku]

    def _track(self, sku: str, quantity: int) -> None:
        self._pending[sku] = self._pending.get(sku, 0) + quantity

    def ensure_available(self, requested: dict[str, int]) -> None:
        """Fail with every shortage at once so the caller can name all offending items."""
        shortages = []
        for sku, quantity in requested.items():
            unit = self.unit(sku)
            if unit.available < quantity:
                shortages.append({"sku": sku, "available": unit.available, "requested": quantity})
        if shortages:
            raise InsufficientStock(shortages)

    def reserve_all(self, order_id, lines: list[tuple[str, int]]) -> None:
        """Reserve every ``(sku, quantity)`` line for one order."""
        requested: dict[str, int] = {}
        for sku, quantity in lines:
            requested[sku] = requested.get(sku, 0) + quantity

        self.ensure_available(requested)
        for sku, quantity in requested.items():
            self.unit(sku).reserve(order_id, quantity)
            self._track(sku, quantity)

    def release(self, order_id, sku: str, quantity: int) -> int:
        released = self.unit(sku).release(order_id, quantity)
        self._track(sku, -released)
        return released

    def release_order(self, order_id, skus) -> dict[str, int]:
        """Release everything still held for ``order_id`` across ``skus``."""
        released = {}
        for sku in dict.fromkeys(skus):
            outstanding = self.unit(sku).outstanding_reservation(order_id)
            if outstanding > 0:
                released[sku] = self.release(order_id, sku, outstanding)
        return released

    def commit(self, order_id, sku: str, quantity: int) -> None:
        self.unit(sku).commit(order_id, quantity)

    def restock(self, order_id, sku: str, quantity: int) -> None:
        self.unit(sku).restock(order_id, quantity)

    def verify(self) -> None:
        """Compare-and-swap check against the persisted ledger versions."""
        conflicts = []
        for sku, unit in self._units.items():
            latest = self._repo.stored_copy(unit.id)
            if latest.ledger_version != self._loaded_versions[sku]:
                conflicts.append(
                    {
                        "sku": sku,
                        "available": latest.available,
                        "requested": self._pending.get(sku, 0),
                    }
                )
        if conflicts:
            logger.warning(
                "Stock ledger changed by a concurrent writer",
                skus=[c["sku"] for c in conflicts],
            )
            raise InsufficientStock(conflicts)

    def persist(self) -> None:
        for unit in self._units.values():
            self._repo.add(unit)

    def flush(self) -> None:
        self.verify()
        self.persist()
