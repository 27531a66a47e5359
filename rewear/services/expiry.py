"""
Expiry rules for swaps that stall.

An ExpiryPolicy maps a status to the longest a swap may sit in it. A stale
request or accepted swap is cancelled; a stale shipment is disputed so a
person can look at it.
"""

from datetime import datetime, timedelta
from typing import Dict, Optional

from ..core.config import Settings
from ..schemas.swap import Swap, SwapStatus
from .state_machine import Transition, can_transition

EXPIRY_TARGETS = {
    SwapStatus.PENDING: (SwapStatus.CANCELLED, "Swap request expired"),
    SwapStatus.ACCEPTED: (SwapStatus.CANCELLED, "Swap expired before an exchange method was chosen"),
    SwapStatus.IN_TRANSIT: (SwapStatus.DISPUTED, "Delivery overdue"),
    SwapStatus.DELIVERED: (SwapStatus.DISPUTED, "Delivery overdue"),
}


class ExpiryPolicy:
    def __init__(self, max_age: Optional[Dict[SwapStatus, timedelta]] = None):
        self.max_age = dict(max_age or {})
        for status in self.max_age:
            if status not in EXPIRY_TARGETS:
                raise ValueError(f"Swaps in status {status.value} can't expire")

    @classmethod
    def from_settings(cls, settings: Settings) -> "ExpiryPolicy":
        max_age = {}
        if settings.pending_expiry_hours is not None:
            max_age[SwapStatus.PENDING] = timedelta(hours=settings.pending_expiry_hours)
        if settings.in_transit_expiry_hours is not None:
            max_age[SwapStatus.IN_TRANSIT] = timedelta(hours=settings.in_transit_expiry_hours)
            max_age[SwapStatus.DELIVERED] = timedelta(hours=settings.in_transit_expiry_hours)
        return cls(max_age)

    @property
    def enabled(self) -> bool:
        return bool(self.max_age)

    @property
    def statuses(self):
        return list(self.max_age)

    def expired_transition(self, swap: Swap, now: datetime) -> Optional[Transition]:
        limit = self.max_age.get(swap.status)
        if limit is None or now - swap.last_status_change() < limit:
            return None

        target, details = EXPIRY_TARGETS[swap.status]
        if not can_transition(swap.status, target):
            return None
        return Transition(target, details, automatic=True)
