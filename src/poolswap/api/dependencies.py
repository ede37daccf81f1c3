"""FastAPI dependencies."""

from fastapi import Request

from poolswap.factory import PoolswapStack


async def get_stack(request: Request) -> PoolswapStack:
    """The app's stack, initialized on first use when lifespan did not run."""
    stack: PoolswapStack = request.app.state.stack
    await stack.initialize()
    return stack
