"""
Interfaces to the systems the swap core depends on but does not own.

- Identity provider: resolves a user id to a username.
- Catalog: returns item records by id.
- Gamification ledger: applies point and stat increments to user balances.

Each has an in-memory implementation for development and tests, and a
Supabase implementation reading the shared ``users`` and ``items`` tables.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from ..core.supabase import execute_query, execute_rpc

logger = logging.getLogger(__name__)

# Catalog statuses an item can't be swapped from
UNSWAPPABLE_ITEM_STATUSES = {"swapped", "removed"}

class UserRecord(BaseModel):
    id: str
    username: str

class ItemRecord(BaseModel):
    id: str
    owner_id: Optional[str] = None
    title: str
    images: List[str] = []
    price: float = Field(0, ge=0)
    carbon_saving_estimate: float = Field(0, ge=0)
    status: str = "active"

class UserStats(BaseModel):
    points_balance: float = 0
    total_swaps: int = 0
    carbon_saved: float = 0


class IdentityProvider(ABC):
    @abstractmethod
    async def resolve_user(self, user_id: str) -> Optional[UserRecord]:
        """Return the user or None if the id is unknown."""


class CatalogService(ABC):
    @abstractmethod
    async def get_item(self, item_id: str) -> Optional[ItemRecord]:
        """Return the item or None if the id is unknown."""


class GamificationLedger(ABC):
    @abstractmethod
    async def apply_points_and_stats(
        self, user_id: str, points_delta: float, swap_delta: int, carbon_delta: float
    ) -> None:
        """Atomically increment a user's balances."""


# In-memory implementations

class InMemoryIdentityProvider(IdentityProvider):
    def __init__(self):
        self.users: Dict[str, UserRecord] = {}

    def add_user(self, user_id: str, username: str) -> UserRecord:
        user = UserRecord(id=user_id, username=username)
        self.users[user_id] = user
        return user

    async def resolve_user(self, user_id: str) -> Optional[UserRecord]:
        return self.users.get(user_id)


class InMemoryCatalog(CatalogService):
    def __init__(self):
        self.items: Dict[str, ItemRecord] = {}

    def add_item(self, item: ItemRecord) -> ItemRecord:
        self.items[item.id] = item
        return item

    async def get_item(self, item_id: str) -> Optional[ItemRecord]:
        return self.items.get(item_id)


class InMemoryGamificationLedger(GamificationLedger):
    def __init__(self):
        self.stats: Dict[str, UserStats] = {}
        self._lock = asyncio.Lock()

    def stats_for(self, user_id: str) -> UserStats:
        return self.stats.get(user_id, UserStats())

    async def apply_points_and_stats(
        self, user_id: str, points_delta: float, swap_delta: int, carbon_delta: float
    ) -> None:
        async with self._lock:
            current = self.stats_for(user_id)
            self.stats[user_id] = UserStats(
                points_balance=current.points_balance + points_delta,
                total_swaps=current.total_swaps + swap_delta,
                carbon_saved=current.carbon_saved + carbon_delta,
            )


# Supabase implementations

class SupabaseIdentityProvider(IdentityProvider):
    async def resolve_user(self, user_id: str) -> Optional[UserRecord]:
        rows = await execute_query(
            table="users",
            query_type="select",
            select="id, username",
            filters={"id": user_id},
        )
        if not rows:
            return None
        return UserRecord(id=str(rows[0]["id"]), username=rows[0]["username"])


class SupabaseCatalog(CatalogService):
    async def get_item(self, item_id: str) -> Optional[ItemRecord]:
        rows = await execute_query(
            table="items",
            query_type="select",
            filters={"id": item_id},
        )
        if not rows:
            return None

        row = rows[0]
        return ItemRecord(
            id=str(row["id"]),
            owner_id=str(row["user_id"]) if row.get("user_id") else None,
            title=row["title"],
            images=row.get("images") or [],
            price=row.get("price") or 0,
            carbon_saving_estimate=row.get("carbon_saving_estimate") or 0,
            status=row.get("status") or "active",
        )


class SupabaseGamificationLedger(GamificationLedger):
    """Applies increments through the ``apply_points_and_stats`` database function."""

    async def apply_points_and_stats(
        self, user_id: str, points_delta: float, swap_delta: int, carbon_delta: float
    ) -> None:
        await execute_rpc(
            "apply_points_and_stats",
            {
                "p_user_id": user_id,
                "p_points_delta": points_delta,
                "p_swap_delta": swap_delta,
                "p_carbon_delta": carbon_delta,
            },
        )
        logger.info(f"Applied {points_delta} points to user {user_id}")
