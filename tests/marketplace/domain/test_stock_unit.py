"""StockUnit aggregate: levels are sums over the append-only ledger."""

import pytest
from protean.exceptions import ValidationError

from marketplace.exceptions import InsufficientStock
from marketplace.inventory.stock import LedgerReason, StockLevels, StockLevelsReconciled, StockUnit


@pytest.fixture()
def unit():
    return StockUnit.open(sku="AP-MUG", listing_id="lst-001", vendor_id="ven-001", initial_quantity=5)


class TestLedgerSums:
    def test_receiving_adds_on_hand(self, unit):
        assert unit.on_hand == 5
        assert unit.reserved == 0
        assert unit.available == 5
        assert unit.ledger_version == 1

    def test_reservation_holds_units(self, unit):
        unit.reserve("ord-001", 3)
        assert unit.on_hand == 5
        assert unit.reserved == 3
        assert unit.available == 2
        assert unit.outstanding_reservation("ord-001") == 3

    def test_every_entry_bumps_version(self, unit):
        unit.reserve("ord-001", 1)
        unit.release("ord-001", 1)
        assert unit.ledger_version == 3
        assert [e.sequence for e in unit.entries] == [1, 2, 3]

    def test_levels_snapshot_follows_ledger(self, unit):
        unit.reserve("ord-001", 2)
        assert unit.levels == StockLevels(on_hand=5, reserved=2, available=3)


class TestReserve:
    def test_cannot_reserve_more_than_available(self, unit):
        unit.reserve("ord-001", 3)
        with pytest.raises(InsufficientStock) as exc:
            unit.reserve("ord-002", 3)
        assert exc.value.shortages == [{"sku": "AP-MUG", "available": 2, "requested": 3}]
        assert exc.value.retryable is True

    def test_quantity_must_be_positive(self, unit):
        with pytest.raises(ValidationError):
            unit.reserve("ord-001", 0)


class TestReleaseAndCommit:
    def test_release_is_capped_at_what_the_order_holds(self, unit):
        unit.reserve("ord-001", 3)
        assert unit.release("ord-001", 5) == 3
        assert unit.reserved == 0

    def test_release_without_reservation_is_a_no_op(self, unit):
        assert unit.release("ord-404", 1) == 0
        assert unit.ledger_version == 1

    def test_commit_ships_units_out(self, unit):
        unit.reserve("ord-001", 3)
        unit.commit("ord-001", 2)
        assert unit.on_hand == 3
        assert unit.reserved == 1
        assert unit.available == 2
        assert unit.entries[-1].reason == LedgerReason.COMMIT.value

    def test_cannot_commit_more_than_reserved(self, unit):
        unit.reserve("ord-001", 1)
        with pytest.raises(ValidationError):
            unit.commit("ord-001", 2)

    def test_restock_returns_units_to_shelf(self, unit):
        unit.reserve("ord-001", 2)
        unit.commit("ord-001", 2)
        unit.restock("ord-001", 1)
        assert unit.on_hand == 4
        assert unit.available == 4


class TestReconcile:
    def test_consistent_unit_reports_no_drift(self, unit):
        assert unit.reconcile() == {"on_hand": 0, "reserved": 0}

    def test_drifted_snapshot_is_rebuilt(self, unit):
        unit.reserve("ord-001", 2)
        unit.levels = StockLevels(on_hand=0, reserved=0, available=0)

        drift = unit.reconcile()

        assert drift == {"on_hand": 5, "reserved": 2}
        assert unit.levels == StockLevels(on_hand=5, reserved=2, available=3)
        assert isinstance(unit._events[-1], StockLevelsReconciled)
