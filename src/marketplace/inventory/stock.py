"""StockUnit aggregate (CQRS): the authoritative reservation ledger for one SKU.

Stock is never held in a counter that can be trusted on its own. Every change
appends a ``LedgerEntry`` with a signed delta and a reason, and the levels are
sums over the ledger:

    reserved  = Σ delta of reserve / release / commit entries
    on_hand   = Σ delta of receive / restock / commit entries
    available = on_hand − reserved

``ledger_version`` grows by one with every entry and is the compare-and-swap
token used by ``InventoryLedger`` to detect a competing writer.
"""

from datetime import UTC, datetime
from enum import Enum

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import DateTime, HasMany, Identifier, Integer, String, ValueObject

from marketplace.domain import marketplace
from marketplace.exceptions import InsufficientStock


class LedgerReason(Enum):
    RECEIVE = "receive"
    RESERVE = "reserve"
    RELEASE = "release"
    COMMIT = "commit"
    RESTOCK = "restock"


_RESERVED_REASONS = {LedgerReason.RESERVE.value, LedgerReason.RELEASE.value, LedgerReason.COMMIT.value}
_ON_HAND_REASONS = {LedgerReason.RECEIVE.value, LedgerReason.RESTOCK.value, LedgerReason.COMMIT.value}


@marketplace.event(part_of="StockUnit")
class StockLedgerEntryRecorded:
    __version__ = "v1"

    stock_unit_id = Identifier(required=True)
    sku = String(required=True, max_length=100)
    order_id = Identifier()
    reason = String(required=True, max_length=20)
    delta = Integer(required=True)
    ledger_version = Integer(required=True)
    on_hand = Integer(required=True)
    reserved = Integer(required=True)
    available = Integer(required=True)
    recorded_at = DateTime(required=True)


@marketplace.event(part_of="StockUnit")
class StockLevelsReconciled:
    __version__ = "v1"

    stock_unit_id = Identifier(required=True)
    sku = String(required=True, max_length=100)
    previous_on_hand = Integer()
    previous_reserved = Integer()
    on_hand = Integer(required=True)
    reserved = Integer(required=True)


@marketplace.entity(part_of="StockUnit")
class LedgerEntry:
    order_id = Identifier()
    delta = Integer(required=True)
    reason = String(required=True, choices=LedgerReason)
    sequence = Integer(required=True)
    created_at = DateTime()


@marketplace.value_object(part_of="StockUnit")
class StockLevels:
    """Denormalised snapshot of the ledger sums, for display only."""

    on_hand = Integer(default=0)
    reserved = Integer(default=0)
    available = Integer(default=0)


@marketplace.aggregate
class StockUnit:
    sku = String(required=True, max_length=100)
    listing_id = Identifier(required=True)
    variant_id = Identifier()
    vendor_id = Identifier(required=True)
    entries = HasMany(LedgerEntry)
    levels = ValueObject(StockLevels)
    ledger_version = Integer(default=0)
    updated_at = DateTime()

    @invariant.post
    def ledger_sums_must_not_go_negative(self):
        reserved = self._sum(_RESERVED_REASONS)
        on_hand = self._sum(_ON_HAND_REASONS)
        if reserved < 0:
            raise ValidationError({"reserved": [f"Reserved quantity for {self.sku} cannot be negative"]})
        if on_hand < 0:
            raise ValidationError({"on_hand": [f"On-hand quantity for {self.sku} cannot be negative"]})

    @classmethod
    def open(cls, sku, listing_id, vendor_id, variant_id=None, initial_quantity: int = 0):
        unit = cls(
            sku=sku,
            listing_id=listing_id,
            variant_id=variant_id,
            vendor_id=vendor_id,
            levels=StockLevels(),
            ledger_version=0,
            updated_at=datetime.now(UTC),
        )
        if initial_quantity:
            unit.receive(initial_quantity)
        return unit

    # -------------------------------------------------------------------
    # Ledger sums
    # -------------------------------------------------------------------
    def _sum(self, reasons, order_id=None) -> int:
        return sum(
            entry.delta
            for entry in self.entries or []
            if entry.reason in reasons and (order_id is None or str(entry.order_id) == str(order_id))
        )

    @property
    def reserved(self) -> int:
        return self._sum(_RESERVED_REASONS)

    @property
    def on_hand(self) -> int:
        return self._sum(_ON_HAND_REASONS)

    @property
    def available(self) -> int:
        return self.on_hand - self.reserved

    def outstanding_reservation(self, order_id) -> int:
        """Units still held for ``order_id`` (reserved, not yet released or shipped)."""
        return self._sum(_RESERVED_REASONS, order_id=order_id)

    # -------------------------------------------------------------------
    # Appending entries
    # -------------------------------------------------------------------
    def _append(self, reason: LedgerReason, delta: int, order_id=None) -> LedgerEntry:
        now = datetime.now(UTC)
        with atomic_change(self):
            entry = LedgerEntry(
                order_id=order_id,
                delta=delta,
                reason=reason.value,
                sequence=self.ledger_version + 1,
                created_at=now,
            )
            self.add_entries(entry)
            self.ledger_version += 1
            self.levels = StockLevels(on_hand=self.on_hand, reserved=self.reserved, available=self.available)
            self.updated_at = now

        self.raise_(
            StockLedgerEntryRecorded(
                stock_unit_id=str(self.id),
                sku=self.sku,
                order_id=order_id,
                reason=reason.value,
                delta=delta,
                ledger_version=self.ledger_version,
                on_hand=self.levels.on_hand,
                reserved=self.levels.reserved,
                available=self.levels.available,
                recorded_at=now,
            )
        )
        return entry

    @staticmethod
    def _require_positive(quantity: int) -> None:
        if quantity is None or quantity <= 0:
            raise ValidationError({"quantity": ["Quantity must be positive"]})

    def receive(self, quantity: int) -> LedgerEntry:
        self._require_positive(quantity)
        return self._append(LedgerReason.RECEIVE, quantity)

    def reserve(self, order_id, quantity: int) -> LedgerEntry:
        self._require_positive(quantity)
        if self.available < quantity:
            raise InsufficientStock([{"sku": self.sku, "available": self.available, "requested": quantity}])
        return self._append(LedgerReason.RESERVE, quantity, order_id=order_id)

    def release(self, order_id, quantity: int) -> int:
        """Release up to ``quantity`` units held for the order. Returns units released."""
        self._require_positive(quantity)
        releasable = min(quantity, self.outstanding_reservation(order_id))
        if releasable <= 0:
            return 0
        self._append(LedgerReason.RELEASE, -releasable, order_id=order_id)
        return releasable

    def commit(self, order_id, quantity: int) -> LedgerEntry:
        """Shipped units leave the reservation and the shelf together."""
        self._require_positive(quantity)
        outstanding = self.outstanding_reservation(order_id)
        if quantity > outstanding:
            raise ValidationError(
                {"quantity": [f"Cannot commit {quantity} of {self.sku}: only {outstanding} reserved for the order"]}
            )
        return self._append(LedgerReason.COMMIT, -quantity, order_id=order_id)

    def restock(self, order_id, quantity: int) -> LedgerEntry:
        """Return refunded, already shipped units to the shelf."""
        self._require_positive(quantity)
        return self._append(LedgerReason.RESTOCK, quantity, order_id=order_id)

    def reconcile(self) -> dict:
        """Rebuild the levels snapshot from the ledger and report any drift."""
        previous = self.levels or StockLevels()
        current = StockLevels(on_hand=self.on_hand, reserved=self.reserved, available=self.available)
        drift = {
            "on_hand": current.on_hand - (previous.on_hand or 0),
            "reserved": current.reserved - (previous.reserved or 0),
        }
        if any(drift.values()):
            self.levels = current
            self.updated_at = datetime.now(UTC)
            self.raise_(
                StockLevelsReconciled(
                    stock_unit_id=str(self.id),
                    sku=self.sku,
                    previous_on_hand=previous.on_hand,
                    previous_reserved=previous.reserved,
                    on_hand=current.on_hand,
                    reserved=current.reserved,
                )
            )
        return drift


@marketplace.repository(part_of=StockUnit)
class StockUnitRepository:
    def find_by_sku(self, sku: str) -> StockUnit | None:
        items = self._dao.query.filter(sku=sku).all().items
        return self.get(items[0].id) if items else None

    def stored_copy(self, unit_id) -> StockUnit:
        """The unit as currently persisted, bypassing any in-memory copy."""
        return self._dao.get(unit_id)

    def for_vendor(self, vendor_id) -> list[StockUnit]:
        return self._dao.query.filter(vendor_id=vendor_id).order_by("sku").all().items

    def all_units(self) -> list[StockUnit]:
        return self._dao.query.order_by("sku").all().items
