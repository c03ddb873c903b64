"""Tests for the pure FIFO planner."""

from decimal import Decimal

import pytest

from metalerp.errors import InsufficientStock, ValidationError
from metalerp.services.fifo import BatchSnapshot, cost_per_kg, plan_fifo


def _qtys(plan):
    return [(a.batch_id, a.quantity) for a in plan]


class TestFifoOrder:
    """Oldest received first, ties broken by id."""

    def test_scenario_a(self):
        """60 units over 50 + 100 take all of the older batch first."""
        batches = [
            BatchSnapshot(id=1, received_date="2024-01-10", quantity_remaining=50),
            BatchSnapshot(id=2, received_date="2024-01-15", quantity_remaining=100),
        ]
        plan = plan_fifo(batches, 60, weight_per_unit=10)
        assert _qtys(plan) == [(1, 50.0), (2, 10.0)]

    def test_input_order_does_not_matter(self):
        batches = [
            BatchSnapshot(id=2, received_date="2024-01-15", quantity_remaining=100),
            BatchSnapshot(id=1, received_date="2024-01-10", quantity_remaining=50),
        ]
        assert _qtys(plan_fifo(batches, 60, weight_per_unit=10)) == [(1, 50.0), (2, 10.0)]

    def test_same_date_lowest_id_first(self):
        batches = [
            BatchSnapshot(id=9, received_date="2024-01-10", quantity_remaining=5),
            BatchSnapshot(id=4, received_date="2024-01-10", quantity_remaining=5),
        ]
        assert _qtys(plan_fifo(batches, 7, weight_per_unit=1)) == [(4, 5.0), (9, 2.0)]

    def test_exhausted_batches_are_skipped(self):
        batches = [
            BatchSnapshot(id=1, received_date="2024-01-01", quantity_remaining=0),
            BatchSnapshot(id=2, received_date="2024-01-02", quantity_remaining=3),
        ]
        assert _qtys(plan_fifo(batches, 2, weight_per_unit=1)) == [(2, 2.0)]


class TestAllocationExactness:
    def test_sums_exactly_to_request(self):
        """Fractional quantities still add up to the request."""
        batches = [
            BatchSnapshot(id=1, received_date="2024-01-01", quantity_remaining=0.1),
            BatchSnapshot(id=2, received_date="2024-01-02", quantity_remaining=0.2),
            BatchSnapshot(id=3, received_date="2024-01-03", quantity_remaining=5),
        ]
        plan = plan_fifo(batches, 0.3, weight_per_unit=1)
        assert sum(Decimal(str(a.quantity)) for a in plan) == Decimal("0.3")
        assert _qtys(plan) == [(1, 0.1), (2, 0.2)]

    def test_never_takes_more_than_remaining(self):
        batches = [
            BatchSnapshot(id=i, received_date=f"2024-01-{i:02d}", quantity_remaining=i) for i in range(1, 6)
        ]
        by_id = {b.id: b for b in batches}
        plan = plan_fifo(batches, 12, weight_per_unit=1)
        assert sum(a.quantity for a in plan) == 12
        for a in plan:
            assert a.quantity <= by_id[a.batch_id].quantity_remaining


class TestInsufficientStock:
    def test_raises_with_figures(self):
        batches = [BatchSnapshot(id=1, received_date="2024-01-10", quantity_remaining=5)]
        with pytest.raises(InsufficientStock) as exc:
            plan_fifo(batches, 8, weight_per_unit=1, sheet_id=42)
        assert exc.value.requested == 8
        assert exc.value.available == 5
        assert exc.value.sheet_id == 42
        assert exc.value.code == "INSUFFICIENT_STOCK"

    def test_no_batches(self):
        with pytest.raises(InsufficientStock):
            plan_fifo([], 1, weight_per_unit=1)

    def test_non_positive_quantity(self):
        with pytest.raises(ValidationError):
            plan_fifo([BatchSnapshot(id=1, received_date="2024-01-10", quantity_remaining=5)], 0, weight_per_unit=1)


class TestCogs:
    def test_standard_sheet(self):
        """Cost per unit is cost/kg x sheet weight; total uses the rounded row weight."""
        batches = [BatchSnapshot(id=1, received_date="2024-01-10", quantity_remaining=50, cost_per_kg=2.0)]
        (a,) = plan_fifo(batches, 5, weight_per_unit=10)
        assert a.weight == 50.0
        assert a.cogs_per_unit == 20.0
        assert a.cogs_total == 100.0

    def test_custom_weight_is_prorated(self):
        batches = [
            BatchSnapshot(id=1, received_date="2024-01-10", quantity_remaining=1, cost_per_kg=2.0),
            BatchSnapshot(id=2, received_date="2024-01-11", quantity_remaining=5, cost_per_kg=3.0),
        ]
        first, second = plan_fifo(batches, 3, weight_per_unit=10, custom_total_weight=45)
        assert (first.weight, second.weight) == (15.0, 30.0)
        assert first.cogs_per_unit == 30.0
        assert second.cogs_total == 90.0

    def test_rounding_half_up(self):
        batches = [BatchSnapshot(id=1, received_date="2024-01-10", quantity_remaining=5, cost_per_kg=0.5)]
        (a,) = plan_fifo(batches, 1, weight_per_unit=2.01)
        assert a.cogs_per_unit == 1.01


class TestCostPerKg:
    def test_price_wins(self):
        assert cost_per_kg(2.5, 999, 10, 10) == 2.5

    def test_derived_from_total_cost(self):
        assert cost_per_kg(None, 300, 10, 10) == 3.0

    def test_unknown_is_zero(self):
        assert cost_per_kg(None, None, 10, 10) == 0.0
        assert cost_per_kg(None, 300, 10, None) == 0.0
