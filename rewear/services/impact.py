"""
Environmental impact and points calculations for completed swaps.

The coefficients are a linear proxy model, not a certified carbon
accounting method.
"""

import math
from datetime import datetime

from ..schemas.swap import Swap, EnvironmentalImpact, PointsCalculation, PartyPoints, BonusPoints

WATER_PER_KG_CARBON = 3.67   # liters of water per kg CO2e
WASTE_PER_KG_CARBON = 0.5    # kg of textile waste per kg CO2e
POINTS_PER_VALUE_UNIT = 2
SUSTAINABILITY_POINTS_PER_KG = 10
SPEED_BONUS_POINTS = 50


def calculate_environmental_impact(swap: Swap, now: datetime) -> EnvironmentalImpact:
    total = (swap.requester.item.carbon_saving or 0) + (swap.provider.item.carbon_saving or 0)
    return EnvironmentalImpact(
        total_carbon_saved=total,
        water_saved=total * WATER_PER_KG_CARBON,
        waste_reduced=total * WASTE_PER_KG_CARBON,
        calculated_at=now,
    )


def completion_hours(swap: Swap, completed_at: datetime) -> float:
    return (completed_at - swap.created_at).total_seconds() / 3600


def calculate_points(swap: Swap, speed_bonus_window_hours: float = 48.0) -> PointsCalculation:
    """
    Work out the points each party earns for a completed swap.

    Each party's base points come from the value of the item they gave up.
    The sustainability and speed bonuses are shared by both parties.
    ``points_awarded`` is left untouched; settlement owns that flag.
    """
    requester_base = math.floor(swap.requester.item.estimated_value * POINTS_PER_VALUE_UNIT)
    provider_base = math.floor(swap.provider.item.estimated_value * POINTS_PER_VALUE_UNIT)

    sustainability_bonus = (
        swap.requester.item.carbon_saving + swap.provider.item.carbon_saving
    ) * SUSTAINABILITY_POINTS_PER_KG

    hours = swap.analytics.completion_time
    speed_bonus = SPEED_BONUS_POINTS if hours is not None and hours < speed_bonus_window_hours else 0

    return PointsCalculation(
        base_points=PartyPoints(requester=requester_base, provider=provider_base),
        bonus_points=BonusPoints(
            sustainability_bonus=sustainability_bonus,
            speed_bonus=speed_bonus,
            quality_bonus=0,
        ),
        total_points=PartyPoints(
            requester=requester_base + sustainability_bonus + speed_bonus,
            provider=provider_base + sustainability_bonus + speed_bonus,
        ),
        points_awarded=swap.points_calculation.points_awarded,
    )
