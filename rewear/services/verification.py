"""Per-party confirmation records for each leg of a swap."""

from datetime import datetime
from typing import List, Optional

from ..schemas.swap import (
    Swap,
    Role,
    PostalMethod,
    ShippingService,
    PreparedConfirmation,
    SentConfirmation,
    ReceivedConfirmation,
)

HAND_DELIVERY_PROOF = "Hand delivery"


def record_prepared(
    swap: Swap,
    role: Role,
    now: datetime,
    photos: Optional[List[str]] = None,
    notes: Optional[str] = None,
) -> None:
    confirmations = swap.verification.confirmations_for(role)
    confirmations.item_prepared = PreparedConfirmation(confirmed=True, timestamp=now, notes=notes)

    if photos:
        swap.verification.photos.before_shipping.set_for(role, photos)


def record_sent(
    swap: Swap,
    role: Role,
    now: datetime,
    tracking_number: Optional[str] = None,
    shipping_service: Optional[ShippingService] = None,
    estimated_delivery: Optional[datetime] = None,
) -> None:
    confirmations = swap.verification.confirmations_for(role)
    confirmations.item_sent = SentConfirmation(
        confirmed=True,
        timestamp=now,
        proof=tracking_number or HAND_DELIVERY_PROOF,
    )

    # Postal swaps also track each direction separately
    method = swap.exchange_method
    if isinstance(method, PostalMethod) and tracking_number:
        shipping = method.shipping_details
        if role is Role.REQUESTER:
            shipping.tracking_numbers.requester_to_provider = tracking_number
            if estimated_delivery:
                shipping.estimated_delivery.requester_item = estimated_delivery
        else:
            shipping.tracking_numbers.provider_to_requester = tracking_number
            if estimated_delivery:
                shipping.estimated_delivery.provider_item = estimated_delivery
        if shipping_service:
            shipping.shipping_service = shipping_service


def record_received(
    swap: Swap,
    role: Role,
    now: datetime,
    condition: str,
    satisfaction_rating: Optional[int] = None,
    photos: Optional[List[str]] = None,
) -> None:
    confirmations = swap.verification.confirmations_for(role)
    confirmations.item_received = ReceivedConfirmation(confirmed=True, timestamp=now, condition=condition)

    if satisfaction_rating is not None:
        confirmations.satisfaction_rating = satisfaction_rating

    if photos:
        swap.verification.photos.after_receiving.set_for(role, photos)
