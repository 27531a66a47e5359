from fastapi import APIRouter
from .endpoints import swaps
from ...core.config import get_settings

router = APIRouter(prefix=get_settings().api_v1_prefix)

# Include all endpoint routers
router.include_router(swaps.router)
