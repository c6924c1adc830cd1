"""
Domain records and API response models.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


# ============================================================================
# Domain records
# ============================================================================


@dataclass(frozen=True)
class DepositEvent:
    """A lock event observed on a source chain."""

    depositor: str  # checksummed EVM address
    amount: int  # smallest unit (wei)
    origin_chain_id: int  # as emitted by the lock contract
    block_number: int
    tx_hash: str  # 0x-prefixed source transaction hash
    log_index: int
    source_chain: str  # configured chain name
    source_chain_id: int  # configured chain id

    @property
    def key(self) -> tuple[int, str, int]:
        """Idempotency key: (source chain id, tx hash, log index)."""
        return (self.source_chain_id, self.tx_hash, self.log_index)


@dataclass
class MintRecord:
    """A completed mint waiting to be picked up by the depositor's client."""

    depositor: str
    tx_hash: str  # destination mint transaction hash
    amount: int
    timestamp: int  # milliseconds since epoch
    source_chain: str
    consumed: bool = False


# ============================================================================
# Mint status
# ============================================================================


class MintStatusResponse(BaseModel):
    """Response of the mint-status endpoint."""

    completed: bool = Field(..., description="Whether a completed mint was returned")
    tx_hash: Optional[str] = Field(
        None, serialization_alias="txHash", description="Destination mint transaction hash"
    )
    amount: Optional[str] = Field(None, description="Minted amount in the smallest unit")
    timestamp: Optional[int] = Field(None, description="Completion time (ms since epoch)")
    source_chain: Optional[str] = Field(
        None, serialization_alias="sourceChain", description="Source chain name"
    )

    @classmethod
    def from_record(cls, record: Optional[MintRecord]) -> "MintStatusResponse":
        if record is None:
            return cls(completed=False)
        return cls(
            completed=True,
            tx_hash=record.tx_hash,
            amount=str(record.amount),
            timestamp=record.timestamp,
            source_chain=record.source_chain,
        )


# ============================================================================
# Health / chains
# ============================================================================


class HealthResponse(BaseModel):
    """Liveness probe response."""

    status: str = Field(..., description="Service status")
    service: str = Field("relayer", description="Service name")
    version: str = Field(..., description="Relayer version")


class ChainStatusResponse(BaseModel):
    """Per-chain watcher status."""

    name: str
    chain_id: int
    last_scanned_block: Optional[int] = Field(
        None, description="Highest fully processed block (None until initialized)"
    )
    consecutive_failures: int = 0
    last_error: Optional[str] = None
    last_success_at: Optional[datetime] = None
    events_processed: int = 0


# ============================================================================
# Dead letters
# ============================================================================


class DeadLetterResponse(BaseModel):
    """A deposit whose mint exhausted its retries."""

    source_chain: str
    source_chain_id: int
    tx_hash: str
    log_index: int
    depositor: str
    amount: str
    block_number: int
    attempts: int
    mint_tx_hash: Optional[str] = None
    last_error: Optional[str] = None


class RequeueRequest(BaseModel):
    """Request to put a dead-lettered deposit back on the retry queue."""

    source_chain_id: int = Field(..., description="Configured source chain id")
    tx_hash: str = Field(..., description="Source lock transaction hash (0x...)")
    log_index: int = Field(..., ge=0, description="Log index of the lock event")


class RequeueResponse(BaseModel):
    """Result of a requeue request."""

    success: bool
    error: Optional[str] = None
