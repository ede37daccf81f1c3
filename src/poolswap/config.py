"""Application configuration using pydantic-settings.

All values can be overridden through environment variables or a ``.env``
file. Amounts are expressed in human units of the relevant token.
"""

from decimal import Decimal
from functools import lru_cache
from typing import Literal, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Curve router on Ethereum mainnet
DEFAULT_ROUTER_ADDRESS = "0xF0d4c12A5768D806021F80a262B4d39d26C58b8D"


class PoolConfig(BaseModel):
    """A live pool the on-chain quoting service may trade against."""

    pool_id: str
    address: str
    coins: list[str]
    uint256_indices: bool = False  # crypto pools use uint256 coin indices
    name: Optional[str] = None


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=True, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ======================
    # Chain
    # ======================
    dry_run: bool = Field(
        default=True, description="Use simulated pools and ledger (no real transactions)"
    )
    rpc_urls: list[str] = Field(
        default_factory=lambda: ["https://ethereum.publicnode.com"],
        description="JSON-RPC endpoints, tried in order",
    )
    chain_id: int = Field(default=1, description="EVM chain id")
    router_address: str = Field(
        default=DEFAULT_ROUTER_ADDRESS, description="Generic swap router (spender)"
    )
    pools: list[PoolConfig] = Field(
        default_factory=list, description="Pools available to the on-chain quoting service"
    )
    signer_private_key: Optional[str] = Field(
        default=None, description="Hex private key for the local signer"
    )
    dry_run_balances: dict[str, Decimal] = Field(
        default_factory=lambda: {
            "ETH": Decimal("10"),
            "USDC": Decimal("25000"),
            "USDT": Decimal("10000"),
            "DAI": Decimal("10000"),
        },
        description="Starting balances of the simulated account",
    )

    # ======================
    # Swap Execution
    # ======================
    gas_reserve: Decimal = Field(
        default=Decimal("0.001"), ge=0, description="Native amount held back for fees"
    )
    default_slippage_bps: int = Field(
        default=50, ge=0, description="Default slippage tolerance (0.5%)"
    )
    max_slippage_bps: int = Field(
        default=5000, ge=0, le=10000, description="Largest accepted tolerance (50%)"
    )
    quote_debounce_ms: int = Field(
        default=800, ge=0, description="Quiet period before a quote request runs"
    )
    quote_ttl_seconds: int = Field(default=60, description="Quote validity period")
    confirmation_timeout: float = Field(
        default=120.0, gt=0, description="Max seconds to wait for a confirmation"
    )
    confirmation_poll_interval: float = Field(
        default=2.0, gt=0, description="Receipt polling interval in seconds"
    )
    approval_policy: Literal["exact", "unlimited"] = Field(
        default="exact", description="Approve the exact amount or the max sentinel"
    )

    # ======================
    # API
    # ======================
    api_host: str = Field(default="0.0.0.0", description="API server host")
    api_port: int = Field(default=8000, description="API server port")

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def quote_debounce_seconds(self) -> float:
        return self.quote_debounce_ms / 1000

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "dry_run": self.dry_run,
            "chain_id": self.chain_id,
            "rpc_urls": [self._redact_url(url) for url in self.rpc_urls],
            "router_address": self.router_address,
            "pools": [pool.pool_id for pool in self.pools],
            "signer": "***" if self.signer_private_key else "(not set)",
            "execution": {
                "gas_reserve": str(self.gas_reserve),
                "default_slippage_bps": self.default_slippage_bps,
                "max_slippage_bps": self.max_slippage_bps,
                "confirmation_timeout": self.confirmation_timeout,
                "approval_policy": self.approval_policy,
            },
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact API keys embedded in RPC URL paths."""
        if "://" not in url:
            return url
        proto, rest = url.split("://", 1)
        host, _, path = rest.partition("/")
        # Infura/Ankr style keys live in the last path segment
        if path and len(path.rsplit("/", 1)[-1]) >= 24:
            return f"{proto}://{host}/***"
        return url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
