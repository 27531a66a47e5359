import logging
from functools import lru_cache

from .config import Settings, get_settings
from ..services.collaborators import (
    InMemoryCatalog,
    InMemoryGamificationLedger,
    InMemoryIdentityProvider,
    SupabaseCatalog,
    SupabaseGamificationLedger,
    SupabaseIdentityProvider,
)
from ..services.swap_repository import InMemorySwapRepository, SupabaseSwapRepository
from ..services.swap_service import SwapService

logger = logging.getLogger(__name__)

def build_swap_service(settings: Settings) -> SwapService:
    """Wire the swap service to the storage backend named in settings."""
    if settings.storage_backend == "supabase":
        return SwapService(
            repository=SupabaseSwapRepository(),
            identity=SupabaseIdentityProvider(),
            catalog=SupabaseCatalog(),
            ledger=SupabaseGamificationLedger(),
            settings=settings,
        )

    if settings.storage_backend != "memory":
        raise ValueError(f"Unknown storage backend: {settings.storage_backend}")

    logger.warning("Using in-memory swap storage; data is lost on restart")
    return SwapService(
        repository=InMemorySwapRepository(),
        identity=InMemoryIdentityProvider(),
        catalog=InMemoryCatalog(),
        ledger=InMemoryGamificationLedger(),
        settings=settings,
    )

@lru_cache()
def get_swap_service() -> SwapService:
    return build_swap_service(get_settings())
