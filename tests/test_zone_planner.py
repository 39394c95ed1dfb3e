"""Zone planner tests."""

from decimal import Decimal

import pytest

from dca_tracker import zone_planner
from dca_tracker.exceptions import AllocationOverflow, DuplicateZoneOrder, InvalidZoneRange, ZoneValidationError
from dca_tracker.models import DcaZoneData, ZoneStatus


def _zone(order: int, price_min, price_max, pct, executed: bool = False, zone_id: str = None) -> DcaZoneData:
    return DcaZoneData(
        zone_id=zone_id or f"z{order}", portfolio_id="main", asset_symbol="BTC", order=order,
        price_min=Decimal(str(price_min)), price_max=Decimal(str(price_max)),
        percentual_base=Decimal(str(pct)), executed=executed,
    )


# Зоны по убыванию цены: 60-70k, 50-60k, 40-50k, 30-40k
LADDER = [
    _zone(1, 60000, 70000, 10),
    _zone(2, 50000, 60000, 20),
    _zone(3, 40000, 50000, 30),
    _zone(4, 30000, 40000, 40),
]


def _by_id(computed):
    return {z.zone_id: z for z in computed}


@pytest.mark.parametrize(
    "price, expected",
    [
        (Decimal("65000"), ZoneStatus.ACTIVE),
        (Decimal("60000"), ZoneStatus.ACTIVE),
        (Decimal("70000"), ZoneStatus.ACTIVE),
        (Decimal("80000"), ZoneStatus.WAITING),
        (Decimal("50000"), ZoneStatus.SKIPPED),
    ],
)
def test_classify_zone(price, expected):
    assert zone_planner.classify_zone(LADDER[0], price) == expected


def test_executed_zone_is_filled_regardless_of_price():
    zone = _zone(1, 60000, 70000, 10, executed=True)
    assert zone_planner.classify_zone(zone, Decimal("65000")) == ZoneStatus.FILLED
    assert zone_planner.classify_zone(zone, Decimal("1")) == ZoneStatus.FILLED


def test_skipped_pool_is_redistributed_proportionally():
    computed = _by_id(zone_planner.plan_zones(LADDER, Decimal("45000"), Decimal("10000")))

    assert computed["z1"].status == ZoneStatus.SKIPPED
    assert computed["z2"].status == ZoneStatus.SKIPPED
    assert computed["z3"].status == ZoneStatus.ACTIVE
    assert computed["z4"].status == ZoneStatus.WAITING

    # пул 30% делится 30:40 между зонами 3 и 4
    assert computed["z1"].percentual_adjusted == 0
    assert computed["z3"].percentual_adjusted == Decimal("30") + Decimal("30") * (Decimal("30") / Decimal("70"))
    assert computed["z4"].percentual_adjusted == Decimal("40") + Decimal("30") * (Decimal("40") / Decimal("70"))
    assert computed["z3"].valor_usd == computed["z3"].percentual_adjusted / 100 * Decimal("10000")


def test_adjusted_sum_preserves_base_sum():
    zones = LADDER[:2] + [_zone(3, 40000, 50000, 30, executed=True), LADDER[3]]
    computed = zone_planner.plan_zones(zones, Decimal("55000"), Decimal("5000"))

    total_base = sum(z.percentual_base for z in zones)
    total_adjusted = sum(z.percentual_adjusted for z in computed
                         if z.status in (ZoneStatus.ACTIVE, ZoneStatus.WAITING, ZoneStatus.FILLED))
    assert abs(total_adjusted - total_base) < Decimal("1e-20")
    assert zone_planner.unallocated_percentual(computed) < Decimal("1e-20")


def test_filled_zone_keeps_base_percentual():
    zones = [_zone(1, 60000, 70000, 10), _zone(2, 50000, 60000, 20, executed=True), _zone(3, 40000, 50000, 70)]
    computed = _by_id(zone_planner.plan_zones(zones, Decimal("55000"), Decimal("1000")))

    assert computed["z2"].status == ZoneStatus.FILLED
    assert computed["z2"].percentual_adjusted == Decimal("20")
    assert computed["z3"].percentual_adjusted == Decimal("80")


def test_pool_is_unallocated_when_nothing_can_absorb_it():
    zones = [_zone(1, 60000, 70000, 40), _zone(2, 50000, 60000, 60, executed=True)]
    computed = zone_planner.plan_zones(zones, Decimal("10000"), Decimal("1000"))

    assert [z.status for z in computed] == [ZoneStatus.SKIPPED, ZoneStatus.FILLED]
    assert zone_planner.unallocated_percentual(computed) == Decimal("40")
    assert computed[0].valor_usd == 0


def test_plan_is_pure_and_repeatable():
    first = zone_planner.plan_zones(LADDER, Decimal("45000"), Decimal("10000"))
    second = zone_planner.plan_zones(LADDER, Decimal("45000"), Decimal("10000"))
    assert first == second
    assert LADDER[0].percentual_base == Decimal("10")


def test_plan_is_sorted_by_order():
    computed = zone_planner.plan_zones(list(reversed(LADDER)), Decimal("45000"), Decimal("0"))
    assert [z.order for z in computed] == [1, 2, 3, 4]


def test_plan_of_no_zones_is_empty():
    assert zone_planner.plan_zones([], Decimal("1"), Decimal("1")) == []


def test_distance_uses_near_edge():
    zone = LADDER[1]
    assert zone_planner.distance_pct(zone, Decimal("80000")) == Decimal("-25")
    assert zone_planner.distance_pct(zone, Decimal("40000")) == Decimal("25")
    assert zone_planner.distance_pct(zone, Decimal("55000")) == 0
    assert zone_planner.distance_pct(zone, Decimal("0")) == 0


def test_validate_rejects_inverted_range():
    with pytest.raises(InvalidZoneRange):
        zone_planner.validate_zone(_zone(1, 70000, 60000, 10), [])
    with pytest.raises(InvalidZoneRange):
        zone_planner.validate_zone(_zone(1, 60000, 60000, 10), [])


def test_validate_rejects_allocation_over_100():
    with pytest.raises(AllocationOverflow) as exc_info:
        zone_planner.validate_zone(_zone(5, 20000, 30000, 1, zone_id="new"), LADDER)
    assert exc_info.value.existing_total == Decimal("100")


def test_validate_excludes_the_zone_itself_on_update():
    updated = _zone(4, 30000, 40000, 40)
    zone_planner.validate_zone(updated, LADDER)


def test_validate_rejects_duplicate_order():
    with pytest.raises(DuplicateZoneOrder):
        zone_planner.validate_zone(_zone(2, 20000, 30000, 0, zone_id="new"), LADDER[:2])


@pytest.mark.parametrize("pct", ["-1", "101"])
def test_validate_rejects_percentual_out_of_range(pct):
    with pytest.raises(ZoneValidationError):
        zone_planner.validate_zone(_zone(1, 1, 2, pct), [])


def test_entry_points_split_value_evenly():
    points = zone_planner.split_entry_points(LADDER[2], 3, Decimal("900"))
    assert [p.target_price for p in points] == [Decimal("40000"), Decimal("45000"), Decimal("50000")]
    assert all(p.value_usd == Decimal("300") for p in points)
    assert [p.entry_order for p in points] == [1, 2, 3]


def test_entry_points_are_capped_by_current_price():
    points = zone_planner.split_entry_points(LADDER[2], 2, Decimal("100"), current_price=Decimal("44000"))
    assert [p.target_price for p in points] == [Decimal("40000"), Decimal("44000")]


def test_single_entry_point_sits_at_price_min():
    points = zone_planner.split_entry_points(LADDER[2], 1, Decimal("100"))
    assert len(points) == 1
    assert points[0].target_price == Decimal("40000")
    assert points[0].value_usd == Decimal("100")


def test_entry_points_require_positive_count():
    with pytest.raises(ValueError):
        zone_planner.split_entry_points(LADDER[2], 0, Decimal("100"))
