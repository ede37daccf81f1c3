"""Health check endpoints."""

from fastapi import APIRouter, Depends

from poolswap import __version__
from poolswap.api.dependencies import get_stack
from poolswap.factory import PoolswapStack

router = APIRouter()


@router.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy", "service": "poolswap"}


@router.get("/health/detailed")
async def detailed_health(stack: PoolswapStack = Depends(get_stack)):
    """Detailed health check with configuration info."""
    return {
        "status": "healthy",
        "service": "poolswap",
        "version": __version__,
        "quoting_service": {
            "name": stack.service.name,
            "ready": stack.service.is_ready,
        },
        "config": stack.settings.get_safe_dict(),
    }
