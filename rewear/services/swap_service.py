"""
Caller-facing swap operations.

Each mutating operation is a single read-modify-write of one swap:

1. take the swap's in-process lock,
2. load the current document,
3. check the caller's role and the swap's status, then apply the change,
4. let the state machine run any automatic transitions,
5. save, conditional on the version that was loaded.

If the conditional save loses a race with another process, the whole
operation is retried against the fresh document. The write that moves a swap
into ``completed`` also settles points with the gamification ledger, exactly
once per swap.
"""

import asyncio
import logging
import secrets
import string
import time
import weakref
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import TypeAdapter, ValidationError as PydanticValidationError

from ..core.config import Settings, get_settings
from ..core.exceptions import (
    AppError,
    ConcurrencyError,
    ConflictError,
    ForbiddenError,
    InternalError,
    NotFoundError,
    ValidationError,
)
from ..schemas.swap import (
    ExchangeMethod,
    ItemSnapshot,
    Party,
    Role,
    ShippingService,
    Swap,
    SwapResponseAction,
    SwapStatus,
    TimelineEntry,
    DisputeResolution,
)
from . import state_machine, verification
from .collaborators import (
    CatalogService,
    GamificationLedger,
    IdentityProvider,
    ItemRecord,
    UNSWAPPABLE_ITEM_STATUSES,
    UserRecord,
)
from .expiry import ExpiryPolicy
from .impact import calculate_environmental_impact, calculate_points, completion_hours
from .state_machine import Transition
from .swap_repository import SwapRepository

logger = logging.getLogger(__name__)

S = SwapStatus

_exchange_method_adapter = TypeAdapter(ExchangeMethod)

_SWAP_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_swap_id() -> str:
    suffix = "".join(secrets.choice(_SWAP_ID_ALPHABET) for _ in range(9))
    return f"SW-{int(time.time() * 1000)}-{suffix}"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# A mutation changes the swap in place. Returning False means there was
# nothing to write.
Mutation = Callable[[Swap, datetime], Optional[bool]]


class SwapService:
    def __init__(
        self,
        repository: SwapRepository,
        identity: IdentityProvider,
        catalog: CatalogService,
        ledger: GamificationLedger,
        settings: Optional[Settings] = None,
        expiry_policy: Optional[ExpiryPolicy] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.identity = identity
        self.catalog = catalog
        self.ledger = ledger
        self.settings = settings or get_settings()
        self.expiry_policy = expiry_policy or ExpiryPolicy.from_settings(self.settings)
        self.clock = clock
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _lock_for(self, swap_id: str) -> asyncio.Lock:
        lock = self._locks.get(swap_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[swap_id] = lock
        return lock

    async def _load(self, swap_id: str) -> Swap:
        try:
            swap = await self.repository.get(swap_id)
        except AppError:
            raise
        except Exception as e:
            logger.error(f"Failed to load swap {swap_id}: {e}")
            raise InternalError("Failed to load swap") from e

        if swap is None:
            raise NotFoundError("Swap not found")
        return swap

    @staticmethod
    def _require_role(swap: Swap, user_id: str) -> Role:
        role = swap.role_of(user_id)
        if role is None:
            raise ForbiddenError("You are not a party to this swap")
        return role

    async def _mutate(self, swap_id: str, actor: Optional[str], mutation: Mutation) -> Swap:
        async with self._lock_for(swap_id):
            for attempt in range(1, self.settings.max_write_retries + 1):
                swap = await self._load(swap_id)
                before = swap.model_copy(deep=True)
                now = self.clock()

                if mutation(swap, now) is False:
                    return swap

                state_machine.drive(swap, actor, now)
                swap.updated_at = now

                settling = swap.status == S.COMPLETED and not swap.points_calculation.points_awarded
                if settling:
                    self._prepare_settlement(swap, now)

                try:
                    await self.repository.save(swap, expected_version=before.version)
                except ConcurrencyError:
                    logger.warning(
                        f"Swap {swap_id} changed during update (attempt {attempt}), retrying"
                    )
                    continue
                except AppError:
                    raise
                except Exception as e:
                    logger.error(f"Failed to save swap {swap_id}: {e}")
                    raise InternalError("Failed to save swap") from e

                if settling:
                    await self._settle(swap, before)
                return swap

        raise ConflictError("Swap is being updated by someone else, please retry")

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    def _prepare_settlement(self, swap: Swap, now: datetime) -> None:
        swap.analytics.completion_time = completion_hours(swap, now)
        swap.environmental_impact = calculate_environmental_impact(swap, now)
        points = calculate_points(swap, self.settings.speed_bonus_window_hours)
        points.points_awarded = True
        swap.points_calculation = points

    async def _settle(self, swap: Swap, before: Swap) -> None:
        """Apply both parties' point awards, undoing everything if one fails."""
        applied = []
        try:
            for role in Role:
                party = swap.party(role)
                points = getattr(swap.points_calculation.total_points, role.value)
                await self.ledger.apply_points_and_stats(
                    party.user_id, points, 1, party.item.carbon_saving
                )
                applied.append((party.user_id, points, party.item.carbon_saving))
        except Exception as e:
            logger.error(f"Awarding points for swap {swap.swap_id} failed, rolling back: {e}")
            await self._rollback_settlement(swap, before, applied)
            raise InternalError("Failed to award points, swap completion was rolled back") from e

        logger.info(
            f"Swap {swap.swap_id} completed: {swap.points_calculation.total_points.requester} points "
            f"to {swap.requester.user_id}, {swap.points_calculation.total_points.provider} points "
            f"to {swap.provider.user_id}, "
            f"{swap.environmental_impact.total_carbon_saved}kg CO2e saved"
        )

    async def _rollback_settlement(self, swap: Swap, before: Swap, applied: list) -> None:
        for user_id, points, carbon in applied:
            try:
                await self.ledger.apply_points_and_stats(user_id, -points, -1, -carbon)
            except Exception:
                logger.exception(f"Could not reverse points for user {user_id} on swap {swap.swap_id}")

        try:
            await self.repository.save(before, expected_version=swap.version)
        except Exception:
            logger.exception(f"Could not restore swap {swap.swap_id} after failed settlement")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_swap(self, swap_id: str, user_id: Optional[str] = None) -> Swap:
        swap = await self._load(swap_id)
        if user_id is not None:
            self._require_role(swap, user_id)
        return swap

    async def list_swaps(
        self,
        user_id: str,
        status: Optional[SwapStatus] = None,
        role: Optional[Role] = None,
    ) -> List[Swap]:
        try:
            return await self.repository.list_for_user(user_id, status=status, role=role)
        except Exception as e:
            logger.error(f"Failed to list swaps for user {user_id}: {e}")
            raise InternalError("Failed to retrieve swaps") from e

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def _get_user(self, user_id: str, label: str) -> UserRecord:
        try:
            user = await self.identity.resolve_user(user_id)
        except AppError:
            raise
        except Exception as e:
            logger.error(f"Failed to look up user {user_id}: {e}")
            raise InternalError("Failed to look up user") from e

        if user is None:
            raise NotFoundError(f"{label} not found")
        return user

    async def _get_item(self, item_id: str, label: str) -> ItemRecord:
        try:
            item = await self.catalog.get_item(item_id)
        except AppError:
            raise
        except Exception as e:
            logger.error(f"Failed to look up item {item_id}: {e}")
            raise InternalError("Failed to look up item") from e

        if item is None:
            raise NotFoundError(f"{label} not found")
        if item.status in UNSWAPPABLE_ITEM_STATUSES:
            raise ValidationError(f"{label} is not available for swapping")
        return item

    async def create_swap_request(
        self,
        requester_id: str,
        provider_id: str,
        requested_item_id: str,
        offered_item_id: Optional[str] = None,
        message: Optional[str] = None,
    ) -> Swap:
        """
        Create a new swap request from ``requester_id`` for the provider's item.

        Without an offered item the requester pays in points; the requester
        side is then recorded as a zero-value "Points Exchange".
        """
        if not requester_id or not provider_id or not requested_item_id:
            raise ValidationError("Missing required fields")

        if requester_id == provider_id:
            raise ValidationError("Cannot swap with yourself")

        requester = await self._get_user(requester_id, "Requester")
        provider = await self._get_user(provider_id, "Provider")

        requested_item = await self._get_item(requested_item_id, "Requested item")
        if requested_item.owner_id is not None and requested_item.owner_id != provider_id:
            raise ValidationError("The provider does not own the requested item")

        if offered_item_id:
            if offered_item_id == requested_item_id:
                raise ValidationError("An item can't be swapped for itself")
            offered_item = await self._get_item(offered_item_id, "Offered item")
            if offered_item.owner_id is not None and offered_item.owner_id != requester_id:
                raise ValidationError("You don't own the offered item")
            requester_item = ItemSnapshot(
                item_id=offered_item.id,
                title=offered_item.title,
                images=offered_item.images,
                estimated_value=offered_item.price,
                carbon_saving=offered_item.carbon_saving_estimate,
            )
        else:
            requester_item = ItemSnapshot(item_id=requested_item.id, title="Points Exchange")

        now = self.clock()
        swap = Swap(
            swap_id=generate_swap_id(),
            requester=Party(user_id=requester_id, username=requester.username, item=requester_item),
            provider=Party(
                user_id=provider_id,
                username=provider.username,
                item=ItemSnapshot(
                    item_id=requested_item.id,
                    title=requested_item.title,
                    images=requested_item.images,
                    estimated_value=requested_item.price,
                    carbon_saving=requested_item.carbon_saving_estimate,
                ),
            ),
            status=S.PENDING,
            message=message,
            timeline=[
                TimelineEntry(
                    event="Swap request created",
                    timestamp=now,
                    performed_by=requester_id,
                    details=message or "Initial swap request",
                    status=S.PENDING,
                )
            ],
            created_at=now,
            updated_at=now,
        )

        try:
            await self.repository.insert(swap)
        except Exception as e:
            logger.error(f"Failed to create swap request: {e}")
            raise InternalError("Failed to create swap request") from e

        logger.info(f"Swap {swap.swap_id} requested by {requester_id} from {provider_id}")
        return swap

    # ------------------------------------------------------------------
    # Negotiation
    # ------------------------------------------------------------------

    async def respond_to_swap(
        self,
        swap_id: str,
        user_id: str,
        response: Union[SwapResponseAction, str],
        message: Optional[str] = None,
    ) -> Swap:
        try:
            response = SwapResponseAction(response)
        except ValueError:
            raise ValidationError("Response must be 'accept' or 'decline'")

        def mutation(swap: Swap, now: datetime):
            if self._require_role(swap, user_id) is not Role.PROVIDER:
                raise ForbiddenError("Only the provider can respond to this request")
            state_machine.ensure_status(swap, {S.PENDING}, "respond to this swap")

            swap.analytics.response_time = (now - swap.created_at).total_seconds() / 60
            if response is SwapResponseAction.ACCEPT:
                target, default_details = S.ACCEPTED, "Request accepted"
            else:
                target, default_details = S.DECLINED, "Request declined"
            state_machine.apply_transition(
                swap, Transition(target, message or default_details), user_id, now
            )

        return await self._mutate(swap_id, user_id, mutation)

    async def select_exchange_method(
        self,
        swap_id: str,
        user_id: str,
        exchange_method: Union[ExchangeMethod, Dict[str, Any]],
    ) -> Swap:
        if isinstance(exchange_method, dict):
            try:
                exchange_method = _exchange_method_adapter.validate_python(exchange_method)
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid exchange method: {e.errors()[0]['msg']}")

        def mutation(swap: Swap, now: datetime):
            self._require_role(swap, user_id)

            if swap.status == S.ACCEPTED:
                swap.exchange_method = exchange_method
                state_machine.apply_transition(
                    swap,
                    Transition(S.METHOD_SELECTED, f"Exchange method selected: {exchange_method.type}"),
                    user_id,
                    now,
                )
                return

            if swap.status == S.METHOD_SELECTED and self.settings.allow_method_reselection:
                previous = swap.exchange_method.type if swap.exchange_method else None
                swap.exchange_method = exchange_method
                swap.timeline.append(
                    TimelineEntry(
                        event="Exchange method changed",
                        timestamp=now,
                        performed_by=user_id,
                        details=f"{previous} -> {exchange_method.type}",
                    )
                )
                return

            raise ConflictError(f"Cannot select an exchange method while swap is {swap.status.value}")

        return await self._mutate(swap_id, user_id, mutation)

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    async def confirm_item_prepared(
        self,
        swap_id: str,
        user_id: str,
        photos: Optional[List[str]] = None,
        notes: Optional[str] = None,
    ) -> Swap:
        def mutation(swap: Swap, now: datetime):
            role = self._require_role(swap, user_id)
            state_machine.ensure_status(
                swap, {S.METHOD_SELECTED, S.ITEMS_PREPARED}, "confirm item preparation"
            )
            verification.record_prepared(swap, role, now, photos=photos, notes=notes)

        return await self._mutate(swap_id, user_id, mutation)

    async def confirm_item_sent(
        self,
        swap_id: str,
        user_id: str,
        tracking_number: Optional[str] = None,
        shipping_service: Optional[Union[ShippingService, str]] = None,
        estimated_delivery: Optional[datetime] = None,
    ) -> Swap:
        if shipping_service is not None:
            try:
                shipping_service = ShippingService(shipping_service)
            except ValueError:
                raise ValidationError(f"Unknown shipping service: {shipping_service}")

        def mutation(swap: Swap, now: datetime):
            role = self._require_role(swap, user_id)
            state_machine.ensure_status(swap, {S.ITEMS_PREPARED, S.IN_TRANSIT}, "confirm shipment")
            verification.record_sent(
                swap,
                role,
                now,
                tracking_number=tracking_number,
                shipping_service=shipping_service,
                estimated_delivery=estimated_delivery,
            )

        return await self._mutate(swap_id, user_id, mutation)

    async def confirm_item_received(
        self,
        swap_id: str,
        user_id: str,
        condition: str,
        satisfaction_rating: Optional[int] = None,
        photos: Optional[List[str]] = None,
    ) -> Swap:
        if not condition or not condition.strip():
            raise ValidationError("Item condition is required")
        if satisfaction_rating is not None and not 1 <= satisfaction_rating <= 5:
            raise ValidationError("Satisfaction rating must be between 1 and 5")

        def mutation(swap: Swap, now: datetime):
            role = self._require_role(swap, user_id)
            state_machine.ensure_status(
                swap, {S.IN_TRANSIT, S.DELIVERED, S.CONFIRMED}, "confirm receipt"
            )
            verification.record_received(
                swap,
                role,
                now,
                condition=condition,
                satisfaction_rating=satisfaction_rating,
                photos=photos,
            )

        return await self._mutate(swap_id, user_id, mutation)

    async def update_tracking(self, swap_id: str, user_id: str, messages: List[str]) -> Swap:
        messages = [message for message in messages or [] if message and message.strip()]
        if not messages:
            raise ValidationError("At least one tracking update is required")

        def mutation(swap: Swap, now: datetime):
            self._require_role(swap, user_id)
            state_machine.ensure_status(
                swap, {S.ITEMS_PREPARED, S.IN_TRANSIT, S.DELIVERED}, "add tracking updates"
            )
            for message in messages:
                swap.timeline.append(
                    TimelineEntry(
                        event="Tracking update",
                        timestamp=now,
                        performed_by=user_id,
                        details=message,
                    )
                )

        return await self._mutate(swap_id, user_id, mutation)

    async def mark_delivered(self, swap_id: str, user_id: str) -> Swap:
        def mutation(swap: Swap, now: datetime):
            self._require_role(swap, user_id)
            state_machine.ensure_status(swap, {S.IN_TRANSIT}, "mark items delivered")
            state_machine.apply_transition(swap, Transition(S.DELIVERED, "Items delivered"), user_id, now)

        return await self._mutate(swap_id, user_id, mutation)

    # ------------------------------------------------------------------
    # Completion, disputes and cancellation
    # ------------------------------------------------------------------

    async def complete_swap(self, swap_id: str, user_id: Optional[str] = None) -> Swap:
        """
        Complete a confirmed swap and award points.

        Completing an already completed swap returns it unchanged, so clients
        can safely retry.
        """
        def mutation(swap: Swap, now: datetime):
            if user_id is not None:
                self._require_role(swap, user_id)
            if swap.status == S.COMPLETED:
                return False
            state_machine.ensure_status(swap, {S.CONFIRMED}, "complete this swap")
            state_machine.apply_transition(
                swap, Transition(S.COMPLETED, "Swap completed successfully"), user_id, now
            )

        return await self._mutate(swap_id, user_id, mutation)

    async def dispute_swap(
        self,
        swap_id: str,
        user_id: str,
        reason: str,
        evidence: Optional[List[str]] = None,
    ) -> Swap:
        if not reason or not reason.strip():
            raise ValidationError("A dispute reason is required")

        def mutation(swap: Swap, now: datetime):
            self._require_role(swap, user_id)
            if state_machine.is_terminal(swap.status):
                raise ConflictError(f"Cannot dispute a swap that is {swap.status.value}")

            swap.dispute_resolution = DisputeResolution(
                is_disputed=True,
                dispute_reason=reason,
                disputed_by=user_id,
                dispute_timestamp=now,
                evidence=list(evidence or []),
            )
            state_machine.apply_transition(
                swap, Transition(S.DISPUTED, f"Dispute raised: {reason}"), user_id, now
            )

        return await self._mutate(swap_id, user_id, mutation)

    async def cancel_swap(self, swap_id: str, user_id: str, reason: Optional[str] = None) -> Swap:
        def mutation(swap: Swap, now: datetime):
            self._require_role(swap, user_id)
            state_machine.ensure_status(swap, {S.PENDING, S.ACCEPTED}, "cancel this swap")
            state_machine.apply_transition(
                swap, Transition(S.CANCELLED, reason or "Swap cancelled"), user_id, now
            )

        return await self._mutate(swap_id, user_id, mutation)

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    async def expire_stale_swaps(self) -> int:
        """Run one expiry sweep. Returns the number of swaps that expired."""
        if not self.expiry_policy.enabled:
            return 0

        candidates = await self.repository.list_by_status(self.expiry_policy.statuses)
        expired = 0

        for candidate in candidates:
            changed = False

            def mutation(swap: Swap, now: datetime):
                nonlocal changed
                changed = False
                transition = self.expiry_policy.expired_transition(swap, now)
                if transition is None:
                    return False
                if transition.target == S.DISPUTED:
                    swap.dispute_resolution = DisputeResolution(
                        is_disputed=True,
                        dispute_reason=transition.details,
                        dispute_timestamp=now,
                    )
                state_machine.apply_transition(swap, transition, None, now)
                changed = True

            try:
                await self._mutate(candidate.swap_id, None, mutation)
            except ConflictError as e:
                logger.warning(f"Skipping expiry of swap {candidate.swap_id}: {e.detail}")
                continue

            if changed:
                expired += 1

        if expired:
            logger.info(f"Expired {expired} stale swaps")
        return expired
