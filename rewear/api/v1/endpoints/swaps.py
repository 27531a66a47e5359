from fastapi import APIRouter, status, Depends, Path, Query
from typing import Annotated, List, Optional
from ....core.dependencies import get_swap_service
from ....core.security import get_current_user_id
from ....schemas.swap import (
    Swap,
    SwapStatus,
    Role,
    SwapCreate,
    SwapRespond,
    ExchangeMethodSelect,
    ConfirmPrepared,
    ConfirmSent,
    ConfirmReceived,
    TrackingUpdates,
    SwapDispute,
    SwapCancel,
)
from ....services.swap_service import SwapService

router = APIRouter(prefix="/swaps", tags=["swaps"])

SwapId = Annotated[str, Path(description="Swap identifier, e.g. SW-1718000000000-abc123xyz")]

@router.post("/", response_model=Swap, status_code=status.HTTP_201_CREATED)
async def create_swap_request(
    swap: SwapCreate,
    current_user_id: str = Depends(get_current_user_id),
    service: SwapService = Depends(get_swap_service),
):
    """
    Create a new swap request.

    The caller becomes the requester. Leave out `offered_item_id` to request
    the item in exchange for points.
    """
    return await service.create_swap_request(
        requester_id=current_user_id,
        provider_id=swap.provider_id,
        requested_item_id=swap.requested_item_id,
        offered_item_id=swap.offered_item_id,
        message=swap.message,
    )

@router.get("/", response_model=List[Swap])
async def get_swaps(
    status: Optional[SwapStatus] = None,
    role: Optional[Role] = Query(None),
    current_user_id: str = Depends(get_current_user_id),
    service: SwapService = Depends(get_swap_service),
):
    """
    Get the current user's swaps, newest first, with optional filtering.
    """
    return await service.list_swaps(current_user_id, status=status, role=role)

@router.get("/{swap_id}", response_model=Swap)
async def get_swap(
    swap_id: SwapId,
    current_user_id: str = Depends(get_current_user_id),
    service: SwapService = Depends(get_swap_service),
):
    """
    Get a specific swap by ID.
    """
    return await service.get_swap(swap_id, user_id=current_user_id)

@router.post("/{swap_id}/respond", response_model=Swap)
async def respond_to_swap(
    body: SwapRespond,
    swap_id: SwapId,
    current_user_id: str = Depends(get_current_user_id),
    service: SwapService = Depends(get_swap_service),
):
    """
    Accept or decline a pending swap. Only the provider can respond.
    """
    return await service.respond_to_swap(swap_id, current_user_id, body.response, body.message)

@router.post("/{swap_id}/exchange-method", response_model=Swap)
async def select_exchange_method(
    body: ExchangeMethodSelect,
    swap_id: SwapId,
    current_user_id: str = Depends(get_current_user_id),
    service: SwapService = Depends(get_swap_service),
):
    """
    Choose how the items change hands: in person, by post, at a drop-off
    point or through an escrow service.
    """
    return await service.select_exchange_method(swap_id, current_user_id, body.exchange_method)

@router.post("/{swap_id}/prepared", response_model=Swap)
async def confirm_item_prepared(
    body: ConfirmPrepared,
    swap_id: SwapId,
    current_user_id: str = Depends(get_current_user_id),
    service: SwapService = Depends(get_swap_service),
):
    return await service.confirm_item_prepared(
        swap_id, current_user_id, photos=body.photos, notes=body.notes
    )

@router.post("/{swap_id}/sent", response_model=Swap)
async def confirm_item_sent(
    body: ConfirmSent,
    swap_id: SwapId,
    current_user_id: str = Depends(get_current_user_id),
    service: SwapService = Depends(get_swap_service),
):
    return await service.confirm_item_sent(
        swap_id,
        current_user_id,
        tracking_number=body.tracking_number,
        shipping_service=body.shipping_service,
        estimated_delivery=body.estimated_delivery,
    )

@router.post("/{swap_id}/received", response_model=Swap)
async def confirm_item_received(
    body: ConfirmReceived,
    swap_id: SwapId,
    current_user_id: str = Depends(get_current_user_id),
    service: SwapService = Depends(get_swap_service),
):
    """
    Confirm receipt of the other party's item.

    When both parties have confirmed and both rated the swap 3 or higher,
    the swap completes and points are awarded right away.
    """
    return await service.confirm_item_received(
        swap_id,
        current_user_id,
        condition=body.condition,
        satisfaction_rating=body.satisfaction_rating,
        photos=body.photos,
    )

@router.post("/{swap_id}/tracking", response_model=Swap)
async def update_tracking(
    body: TrackingUpdates,
    swap_id: SwapId,
    current_user_id: str = Depends(get_current_user_id),
    service: SwapService = Depends(get_swap_service),
):
    return await service.update_tracking(
        swap_id, current_user_id, [update.message for update in body.tracking_updates]
    )

@router.post("/{swap_id}/delivered", response_model=Swap)
async def mark_delivered(
    swap_id: SwapId,
    current_user_id: str = Depends(get_current_user_id),
    service: SwapService = Depends(get_swap_service),
):
    return await service.mark_delivered(swap_id, current_user_id)

@router.post("/{swap_id}/complete", response_model=Swap)
async def complete_swap(
    swap_id: SwapId,
    current_user_id: str = Depends(get_current_user_id),
    service: SwapService = Depends(get_swap_service),
):
    """
    Complete a confirmed swap and award points. Safe to retry.
    """
    return await service.complete_swap(swap_id, current_user_id)

@router.post("/{swap_id}/dispute", response_model=Swap)
async def dispute_swap(
    body: SwapDispute,
    swap_id: SwapId,
    current_user_id: str = Depends(get_current_user_id),
    service: SwapService = Depends(get_swap_service),
):
    """
    Raise a dispute. The swap is frozen until it is resolved by the team.
    """
    return await service.dispute_swap(swap_id, current_user_id, body.reason, body.evidence)

@router.post("/{swap_id}/cancel", response_model=Swap)
async def cancel_swap(
    swap_id: SwapId,
    body: Optional[SwapCancel] = None,
    current_user_id: str = Depends(get_current_user_id),
    service: SwapService = Depends(get_swap_service),
):
    return await service.cancel_swap(swap_id, current_user_id, body.reason if body else None)
