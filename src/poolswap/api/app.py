"""FastAPI application factory."""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from poolswap import __version__
from poolswap.config import get_settings
from poolswap.factory import PoolswapStack, create_stack


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    await app.state.stack.initialize()
    yield
    # Shutdown
    await app.state.stack.close()


def create_app(stack: Optional[PoolswapStack] = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = stack.settings if stack else get_settings()

    app = FastAPI(
        title="Poolswap API",
        description="Swap route quoting over liquidity pools",
        version=__version__,
        lifespan=lifespan,
        debug=settings.debug,
    )
    app.state.stack = stack or create_stack(settings)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register routes
    from poolswap.api.routes import health, quotes, tokens

    app.include_router(health.router, tags=["Health"])
    app.include_router(tokens.router, tags=["Tokens"])
    app.include_router(quotes.router, tags=["Quotes"])

    return app
