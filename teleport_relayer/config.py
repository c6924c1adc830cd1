"""
Configuration management for the Teleport relayer.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import structlog
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger()

ETH_SEPOLIA_CHAIN_ID = 11155111
BASE_SEPOLIA_CHAIN_ID = 84532

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class RelayerError(Exception):
    """Base class for relayer errors."""


class ConfigurationError(RelayerError):
    """The relayer cannot start with the given configuration."""


class ChainSettings(BaseModel):
    """A source chain entry of EXTRA_SOURCE_CHAINS (JSON list)."""

    name: str
    rpc_url: str = ""
    lock_contract: str = ""
    chain_id: int
    decimals: int = 18
    start_block: Optional[int] = None


class Settings(BaseSettings):
    """
    Environment-based settings.

    All settings can be overridden via environment variables or a .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Source chains
    eth_sepolia_rpc: str = ""
    eth_sepolia_lock_contract: str = ""
    eth_sepolia_start_block: Optional[int] = None
    base_sepolia_rpc: str = ""
    base_sepolia_lock_contract: str = ""
    base_sepolia_start_block: Optional[int] = None
    extra_source_chains: list[ChainSettings] = Field(
        default_factory=list,
        description="Additional source chains as a JSON list",
    )
    lock_event_name: str = Field(
        default="EthLocked",
        description="Name of the lock event emitted by the source contracts",
    )

    # Destination chain
    dst_rpc: str = ""
    private_key: str = ""
    token_contract: str = ""
    mint_gas_limit: int = 200_000
    confirmation_timeout_seconds: float = 120.0

    # API server
    host: str = "127.0.0.1"
    port: int = 3001
    allowed_origins: list[str] = Field(default=["*"], description="CORS allowed origins")
    api_token: Optional[str] = Field(
        default=None,
        description="Token required (X-API-Key) on operator endpoints when set",
    )

    # Relayer
    database_url: str = "sqlite:///./relayer.db"
    poll_interval_seconds: float = 15.0
    max_block_range: int = 2000
    max_mint_attempts: int = 5
    retry_base_delay_seconds: float = 30.0
    retry_max_delay_seconds: float = 900.0
    keep_consumed: int = 5
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"must be one of {', '.join(LOG_LEVELS)}")
        return level


@dataclass(frozen=True)
class SourceChainConfig:
    """A source ledger the relayer watches for lock events."""

    name: str
    rpc_url: str
    lock_contract: str
    chain_id: int
    decimals: int = 18
    start_block: Optional[int] = None


def build_source_chains(settings: Settings) -> list[SourceChainConfig]:
    """
    Collect the configured source chains.

    Chains without an RPC URL or lock contract address are skipped.
    """
    candidates = [
        ChainSettings(
            name="Ethereum Sepolia",
            rpc_url=settings.eth_sepolia_rpc,
            lock_contract=settings.eth_sepolia_lock_contract,
            chain_id=ETH_SEPOLIA_CHAIN_ID,
            start_block=settings.eth_sepolia_start_block,
        ),
        ChainSettings(
            name="Base Sepolia",
            rpc_url=settings.base_sepolia_rpc,
            lock_contract=settings.base_sepolia_lock_contract,
            chain_id=BASE_SEPOLIA_CHAIN_ID,
            start_block=settings.base_sepolia_start_block,
        ),
        *settings.extra_source_chains,
    ]

    chains = []
    for candidate in candidates:
        if not candidate.rpc_url or not candidate.lock_contract:
            logger.info(
                "source_chain_skipped",
                chain=candidate.name,
                reason="missing RPC or lock contract address",
            )
            continue
        chains.append(
            SourceChainConfig(
                name=candidate.name,
                rpc_url=candidate.rpc_url,
                lock_contract=candidate.lock_contract,
                chain_id=candidate.chain_id,
                decimals=candidate.decimals,
                start_block=candidate.start_block,
            )
        )
    return chains


@dataclass
class RelayerConfig:
    """Full relayer configuration."""

    settings: Settings
    source_chains: list[SourceChainConfig] = field(default_factory=list)

    @classmethod
    def from_env(cls, env_path: Optional[Path] = None) -> "RelayerConfig":
        """Load configuration from environment."""
        settings = Settings(_env_file=env_path) if env_path else Settings()
        return cls(settings=settings, source_chains=build_source_chains(settings))

    @property
    def has_destination(self) -> bool:
        s = self.settings
        return bool(s.dst_rpc and s.private_key and s.token_contract)

    def validate(self, require_destination: bool = True) -> None:
        """Raise ConfigurationError if the relayer cannot run."""
        if not self.source_chains:
            raise ConfigurationError("No source chain configured")

        seen: set[int] = set()
        for chain in self.source_chains:
            if chain.chain_id in seen:
                raise ConfigurationError(f"Duplicate source chain id {chain.chain_id}")
            seen.add(chain.chain_id)

        if require_destination and not self.has_destination:
            raise ConfigurationError(
                "DST_RPC, PRIVATE_KEY and TOKEN_CONTRACT must be set"
            )

        if self.settings.max_block_range < 1:
            raise ConfigurationError("MAX_BLOCK_RANGE must be at least 1")
