from datetime import datetime, timedelta, timezone

import pytest

from rewear.schemas.swap import ItemSnapshot, Party, Swap, SwapStatus
from rewear.services.impact import (
    calculate_environmental_impact,
    calculate_points,
    completion_hours,
)

CREATED = datetime(2026, 6, 1, 8, 0, tzinfo=timezone.utc)


def make_swap(requester_value=55, requester_carbon=4.2, provider_value=45, provider_carbon=3.8):
    return Swap(
        swap_id="SW-1780000000000-impact001",
        requester=Party(
            user_id="u1",
            username="alice",
            item=ItemSnapshot(
                item_id="i1", title="Jacket", estimated_value=requester_value, carbon_saving=requester_carbon
            ),
        ),
        provider=Party(
            user_id="u2",
            username="bob",
            item=ItemSnapshot(
                item_id="i2", title="Sweater", estimated_value=provider_value, carbon_saving=provider_carbon
            ),
        ),
        status=SwapStatus.COMPLETED,
        created_at=CREATED,
        updated_at=CREATED,
    )


def test_reference_swap_completed_in_ten_hours():
    swap = make_swap()
    completed_at = CREATED + timedelta(hours=10)
    swap.analytics.completion_time = completion_hours(swap, completed_at)

    impact = calculate_environmental_impact(swap, completed_at)
    points = calculate_points(swap)

    assert swap.analytics.completion_time == pytest.approx(10)
    assert impact.total_carbon_saved == pytest.approx(8.0)
    assert impact.calculated_at == completed_at
    assert points.base_points.requester == 110
    assert points.base_points.provider == 90
    assert points.bonus_points.sustainability_bonus == pytest.approx(80)
    assert points.bonus_points.speed_bonus == 50
    assert points.bonus_points.quality_bonus == 0
    assert points.total_points.requester == pytest.approx(240)
    assert points.total_points.provider == pytest.approx(220)
    assert points.points_awarded is False


def test_water_and_waste_scale_with_carbon():
    impact = calculate_environmental_impact(make_swap(requester_carbon=6, provider_carbon=4), CREATED)

    assert impact.total_carbon_saved == pytest.approx(10)
    assert impact.water_saved == pytest.approx(36.7)
    assert impact.waste_reduced == pytest.approx(5)


def test_impact_is_linear_in_each_item():
    a = calculate_environmental_impact(make_swap(requester_carbon=1, provider_carbon=0), CREATED)
    b = calculate_environmental_impact(make_swap(requester_carbon=0, provider_carbon=2.5), CREATED)
    both = calculate_environmental_impact(make_swap(requester_carbon=1, provider_carbon=2.5), CREATED)

    assert both.total_carbon_saved == pytest.approx(a.total_carbon_saved + b.total_carbon_saved)
    assert both.water_saved == pytest.approx(a.water_saved + b.water_saved)
    assert both.waste_reduced == pytest.approx(a.waste_reduced + b.waste_reduced)


def test_base_points_round_down():
    points = calculate_points(make_swap(requester_value=12.75, provider_value=0.4))
    assert points.base_points.requester == 25
    assert points.base_points.provider == 0


@pytest.mark.parametrize("hours,bonus", [(1, 50), (47.9, 50), (48, 0), (120, 0)])
def test_speed_bonus_window(hours, bonus):
    swap = make_swap()
    swap.analytics.completion_time = hours
    assert calculate_points(swap).bonus_points.speed_bonus == bonus


def test_no_speed_bonus_without_completion_time():
    assert calculate_points(make_swap()).bonus_points.speed_bonus == 0


def test_custom_speed_window():
    swap = make_swap()
    swap.analytics.completion_time = 30
    assert calculate_points(swap, speed_bonus_window_hours=24).bonus_points.speed_bonus == 0


def test_points_exchange_side_earns_only_bonuses():
    swap = make_swap(requester_value=0, requester_carbon=0)
    swap.analytics.completion_time = 5
    points = calculate_points(swap)

    assert points.base_points.requester == 0
    assert points.total_points.requester == pytest.approx(38 + 50)
    assert points.total_points.provider == pytest.approx(90 + 38 + 50)
