"""
Swap lifecycle state machine.

The transition table is the single source of truth for which status changes
are legal. ``apply_transition`` is the only function that writes
``Swap.status``; it always appends exactly one timeline entry.

Automatic transitions (both parties prepared, both sent, both received, both
satisfied) are produced by ``next_automatic_transition`` and applied by the
caller until the swap settles.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, FrozenSet, Optional

from ..core.exceptions import ConflictError
from ..schemas.swap import Swap, SwapStatus, TimelineEntry, Role

logger = logging.getLogger(__name__)

S = SwapStatus

TRANSITIONS: Dict[SwapStatus, FrozenSet[SwapStatus]] = {
    S.PENDING: frozenset({S.ACCEPTED, S.DECLINED, S.CANCELLED, S.DISPUTED}),
    S.ACCEPTED: frozenset({S.METHOD_SELECTED, S.CANCELLED, S.DISPUTED}),
    S.METHOD_SELECTED: frozenset({S.ITEMS_PREPARED, S.DISPUTED}),
    S.ITEMS_PREPARED: frozenset({S.IN_TRANSIT, S.DISPUTED}),
    S.IN_TRANSIT: frozenset({S.DELIVERED, S.CONFIRMED, S.DISPUTED}),
    S.DELIVERED: frozenset({S.CONFIRMED, S.DISPUTED}),
    S.CONFIRMED: frozenset({S.COMPLETED, S.DISPUTED}),
    S.DECLINED: frozenset(),
    S.COMPLETED: frozenset(),
    S.DISPUTED: frozenset(),
    S.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset(status for status, targets in TRANSITIONS.items() if not targets)

# Minimum satisfaction rating from both parties for completion without an explicit call
AUTO_COMPLETE_MIN_RATING = 3


@dataclass(frozen=True)
class Transition:
    target: SwapStatus
    details: str = ""
    automatic: bool = False


def can_transition(current: SwapStatus, target: SwapStatus) -> bool:
    return target in TRANSITIONS[current]


def is_terminal(status: SwapStatus) -> bool:
    return status in TERMINAL_STATUSES


def ensure_status(swap: Swap, allowed, action: str) -> None:
    """Raise ConflictError unless the swap is in one of ``allowed``."""
    if swap.status not in allowed:
        raise ConflictError(f"Cannot {action} while swap is {swap.status.value}")


def apply_transition(
    swap: Swap,
    transition: Transition,
    performed_by: Optional[str],
    now: datetime,
) -> None:
    """Move the swap to ``transition.target`` and record it on the timeline."""
    if not can_transition(swap.status, transition.target):
        raise ConflictError(
            f"Cannot change status from {swap.status.value} to {transition.target.value}"
        )

    previous = swap.status
    swap.status = transition.target
    swap.timeline.append(
        TimelineEntry(
            event=f"Status changed to {transition.target.value}",
            timestamp=now,
            performed_by=performed_by,
            details=transition.details,
            status=transition.target,
            automatic=transition.automatic,
        )
    )
    swap.updated_at = now

    logger.info(
        f"Swap {swap.swap_id}: {previous.value} -> {transition.target.value}"
        f"{' (automatic)' if transition.automatic else ''}"
    )


def _both(swap: Swap, check) -> bool:
    return all(check(swap.verification.confirmations_for(role)) for role in Role)


def next_automatic_transition(swap: Swap) -> Optional[Transition]:
    """Return the transition the swap's own state calls for, if any."""
    status = swap.status

    if status == S.METHOD_SELECTED and _both(swap, lambda c: c.item_prepared.confirmed):
        return Transition(S.ITEMS_PREPARED, "Both items prepared for exchange", automatic=True)

    if status == S.ITEMS_PREPARED and _both(swap, lambda c: c.item_sent.confirmed):
        return Transition(S.IN_TRANSIT, "Both items are in transit", automatic=True)

    if status in (S.IN_TRANSIT, S.DELIVERED) and _both(swap, lambda c: c.item_received.confirmed):
        return Transition(S.CONFIRMED, "Both parties confirmed receipt", automatic=True)

    if status == S.CONFIRMED and _both(
        swap, lambda c: (c.satisfaction_rating or 0) >= AUTO_COMPLETE_MIN_RATING
    ):
        return Transition(S.COMPLETED, "Both parties satisfied, swap completed", automatic=True)

    return None


def drive(swap: Swap, performed_by: Optional[str], now: datetime) -> int:
    """Apply automatic transitions until none remain. Returns how many ran."""
    applied = 0
    transition = next_automatic_transition(swap)
    while transition is not None:
        apply_transition(swap, transition, performed_by, now)
        applied += 1
        transition = next_automatic_transition(swap)
    return applied
