"""Shared fixtures: an in-memory swap service with a controllable clock."""

from datetime import datetime, timedelta, timezone

import pytest

from rewear.core.config import Settings
from rewear.schemas.swap import SwapStatus
from rewear.services.collaborators import (
    InMemoryCatalog,
    InMemoryGamificationLedger,
    InMemoryIdentityProvider,
    ItemRecord,
)
from rewear.services.swap_repository import InMemorySwapRepository
from rewear.services.swap_service import SwapService

REQUESTER = "user-alice"
PROVIDER = "user-bob"
OUTSIDER = "user-carol"

REQUESTER_ITEM = "item-denim-jacket"
PROVIDER_ITEM = "item-wool-sweater"

IN_PERSON = {
    "type": "in_person",
    "meetup_location": {"name": "Central Library", "address": "1 Library Square"},
    "scheduled_time": "2026-06-02T15:00:00+00:00",
}

POSTAL = {
    "type": "postal",
    "shipping_details": {
        "requester_address": {"street": "12 Elm St", "city": "Springfield", "zip_code": "11111"},
        "provider_address": {"street": "34 Oak Ave", "city": "Shelbyville", "zip_code": "22222"},
    },
}


class FakeClock:
    """Clock that only moves when a test says so."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 6, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def settings():
    return Settings(_env_file=None, storage_backend="memory")


@pytest.fixture
def identity():
    provider = InMemoryIdentityProvider()
    provider.add_user(REQUESTER, "alice")
    provider.add_user(PROVIDER, "bob")
    provider.add_user(OUTSIDER, "carol")
    return provider


@pytest.fixture
def catalog():
    catalog = InMemoryCatalog()
    catalog.add_item(ItemRecord(
        id=REQUESTER_ITEM,
        owner_id=REQUESTER,
        title="Denim jacket",
        images=["https://cdn.rewear.app/items/denim.jpg"],
        price=55,
        carbon_saving_estimate=4.2,
    ))
    catalog.add_item(ItemRecord(
        id=PROVIDER_ITEM,
        owner_id=PROVIDER,
        title="Wool sweater",
        price=45,
        carbon_saving_estimate=3.8,
    ))
    return catalog


@pytest.fixture
def repository():
    return InMemorySwapRepository()


@pytest.fixture
def ledger():
    return InMemoryGamificationLedger()


@pytest.fixture
def service(repository, identity, catalog, ledger, settings, clock):
    return SwapService(
        repository=repository,
        identity=identity,
        catalog=catalog,
        ledger=ledger,
        settings=settings,
        clock=clock,
    )


# =============================================================================
# Helpers
# =============================================================================


async def create_swap(service, offered=True, message="Would you swap?"):
    return await service.create_swap_request(
        requester_id=REQUESTER,
        provider_id=PROVIDER,
        requested_item_id=PROVIDER_ITEM,
        offered_item_id=REQUESTER_ITEM if offered else None,
        message=message,
    )


async def advance_to(service, status: SwapStatus, method=None, clock=None):
    """
    Create a swap and walk it forward to ``status`` through the public
    operations. Each step moves the clock an hour when a clock is given.
    """
    order = [
        SwapStatus.PENDING,
        SwapStatus.ACCEPTED,
        SwapStatus.METHOD_SELECTED,
        SwapStatus.ITEMS_PREPARED,
        SwapStatus.IN_TRANSIT,
        SwapStatus.CONFIRMED,
        SwapStatus.COMPLETED,
    ]
    target = order.index(status)

    def tick():
        if clock is not None:
            clock.advance(hours=1)

    swap = await create_swap(service)
    if target >= 1:
        tick()
        swap = await service.respond_to_swap(swap.swap_id, PROVIDER, "accept")
    if target >= 2:
        tick()
        swap = await service.select_exchange_method(swap.swap_id, REQUESTER, method or IN_PERSON)
    if target >= 3:
        tick()
        await service.confirm_item_prepared(swap.swap_id, REQUESTER)
        swap = await service.confirm_item_prepared(swap.swap_id, PROVIDER)
    if target >= 4:
        tick()
        await service.confirm_item_sent(swap.swap_id, REQUESTER)
        swap = await service.confirm_item_sent(swap.swap_id, PROVIDER)
    if target >= 5:
        tick()
        # Ratings below the auto-complete threshold keep the swap in confirmed
        await service.confirm_item_received(swap.swap_id, REQUESTER, "As described", satisfaction_rating=2)
        swap = await service.confirm_item_received(swap.swap_id, PROVIDER, "As described", satisfaction_rating=2)
    if target >= 6:
        tick()
        swap = await service.complete_swap(swap.swap_id, REQUESTER)

    assert swap.status == status
    return swap
