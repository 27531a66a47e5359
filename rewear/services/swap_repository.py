"""
Swap persistence.

Every write after the initial insert is conditional on the version that was
read, so two writers racing on the same swap can't both succeed. The loser
gets a ConcurrencyError and is expected to reload and retry.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional

from ..core.exceptions import ConcurrencyError
from ..core.supabase import execute_query
from ..schemas.swap import Swap, SwapStatus, Role

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 50


def _document(swap: Swap) -> dict:
    return swap.model_dump(mode="json", exclude={"progress_percentage", "version"})


class SwapRepository(ABC):
    @abstractmethod
    async def get(self, swap_id: str) -> Optional[Swap]:
        ...

    @abstractmethod
    async def insert(self, swap: Swap) -> Swap:
        """Store a new swap at version 1."""

    @abstractmethod
    async def save(self, swap: Swap, expected_version: int) -> Swap:
        """Store ``swap`` if the stored version still equals ``expected_version``."""

    @abstractmethod
    async def list_for_user(
        self,
        user_id: str,
        status: Optional[SwapStatus] = None,
        role: Optional[Role] = None,
        limit: int = DEFAULT_LIST_LIMIT,
    ) -> List[Swap]:
        """Swaps the user takes part in, newest first."""

    @abstractmethod
    async def list_by_status(self, statuses: Iterable[SwapStatus]) -> List[Swap]:
        ...


class InMemorySwapRepository(SwapRepository):
    def __init__(self):
        self.documents: Dict[str, dict] = {}
        self.versions: Dict[str, int] = {}

    def _load(self, swap_id: str) -> Swap:
        swap = Swap.model_validate(self.documents[swap_id])
        swap.version = self.versions[swap_id]
        return swap

    async def get(self, swap_id: str) -> Optional[Swap]:
        # Yield like a real round trip would
        await asyncio.sleep(0)
        if swap_id not in self.documents:
            return None
        return self._load(swap_id)

    async def insert(self, swap: Swap) -> Swap:
        await asyncio.sleep(0)
        if swap.swap_id in self.documents:
            raise ConcurrencyError(f"Swap {swap.swap_id} already exists")
        swap.version = 1
        self.documents[swap.swap_id] = _document(swap)
        self.versions[swap.swap_id] = swap.version
        return swap

    async def save(self, swap: Swap, expected_version: int) -> Swap:
        await asyncio.sleep(0)
        if self.versions.get(swap.swap_id) != expected_version:
            raise ConcurrencyError(f"Swap {swap.swap_id} was modified concurrently")
        swap.version = expected_version + 1
        self.documents[swap.swap_id] = _document(swap)
        self.versions[swap.swap_id] = swap.version
        return swap

    async def list_for_user(
        self,
        user_id: str,
        status: Optional[SwapStatus] = None,
        role: Optional[Role] = None,
        limit: int = DEFAULT_LIST_LIMIT,
    ) -> List[Swap]:
        swaps = [self._load(swap_id) for swap_id in self.documents]
        swaps = [
            swap for swap in swaps
            if (role is None and swap.role_of(user_id) is not None)
            or (role is not None and swap.party(role).user_id == user_id)
        ]
        if status:
            swaps = [swap for swap in swaps if swap.status == status]
        swaps.sort(key=lambda swap: swap.created_at, reverse=True)
        return swaps[:limit]

    async def list_by_status(self, statuses: Iterable[SwapStatus]) -> List[Swap]:
        wanted = set(statuses)
        return [
            self._load(swap_id) for swap_id, document in self.documents.items()
            if SwapStatus(document["status"]) in wanted
        ]


class SupabaseSwapRepository(SwapRepository):
    """Stores each swap as a jsonb document with indexed columns for lookups."""

    table = "swaps"

    @staticmethod
    def _row(swap: Swap) -> dict:
        return {
            "swap_id": swap.swap_id,
            "requester_id": swap.requester.user_id,
            "provider_id": swap.provider.user_id,
            "status": swap.status.value,
            "version": swap.version,
            "created_at": swap.created_at.isoformat(),
            "updated_at": swap.updated_at.isoformat(),
            "document": _document(swap),
        }

    @staticmethod
    def _from_row(row: dict) -> Swap:
        swap = Swap.model_validate(row["document"])
        swap.version = row["version"]
        return swap

    async def get(self, swap_id: str) -> Optional[Swap]:
        rows = await execute_query(
            table=self.table,
            query_type="select",
            filters={"swap_id": swap_id},
        )
        if not rows:
            return None
        return self._from_row(rows[0])

    async def insert(self, swap: Swap) -> Swap:
        swap.version = 1
        await execute_query(table=self.table, query_type="insert", data=self._row(swap))
        return swap

    async def save(self, swap: Swap, expected_version: int) -> Swap:
        swap.version = expected_version + 1
        rows = await execute_query(
            table=self.table,
            query_type="update",
            data=self._row(swap),
            filters={"swap_id": swap.swap_id, "version": expected_version},
        )
        if not rows:
            swap.version = expected_version
            raise ConcurrencyError(f"Swap {swap.swap_id} was modified concurrently")
        return swap

    async def list_for_user(
        self,
        user_id: str,
        status: Optional[SwapStatus] = None,
        role: Optional[Role] = None,
        limit: int = DEFAULT_LIST_LIMIT,
    ) -> List[Swap]:
        filters = {}
        or_filter = None
        if role is not None:
            filters[f"{role.value}_id"] = user_id
        else:
            or_filter = f"requester_id.eq.{user_id},provider_id.eq.{user_id}"
        if status:
            filters["status"] = status.value

        rows = await execute_query(
            table=self.table,
            query_type="select",
            filters=filters,
            or_filter=or_filter,
            order_by={"created_at": "desc"},
            limit=limit,
        )
        return [self._from_row(row) for row in rows]

    async def list_by_status(self, statuses: Iterable[SwapStatus]) -> List[Swap]:
        rows = await execute_query(
            table=self.table,
            query_type="select",
            filters={"status": [status.value for status in statuses]},
        )
        return [self._from_row(row) for row in rows]
