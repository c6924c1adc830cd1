"""
Shared fixtures and in-memory chain fakes.
"""

from __future__ import annotations

from typing import Any, Optional

import pytest
import pytest_asyncio
import structlog
from web3.exceptions import TimeExhausted

from teleport_relayer.config import SourceChainConfig
from teleport_relayer.db import RelayerDatabase
from teleport_relayer.executor import MintExecutor
from teleport_relayer.store import CompletionStore

ALICE = "0x" + "11" * 20
BOB = "0x" + "22" * 20

CHAIN_A = SourceChainConfig(
    name="Chain A",
    rpc_url="http://chain-a.invalid",
    lock_contract="0x" + "aa" * 20,
    chain_id=1001,
)
CHAIN_B = SourceChainConfig(
    name="Chain B",
    rpc_url="http://chain-b.invalid",
    lock_contract="0x" + "bb" * 20,
    chain_id=1002,
)

ONE_AND_HALF = 1_500_000_000_000_000_000
QUARTER = 250_000_000_000_000_000


class FakeSourceClient:
    """Source chain with a settable head and a list of decoded lock logs."""

    def __init__(self, chain: SourceChainConfig, head: int = 100):
        self.chain = chain
        self.head = head
        self.logs: list[dict[str, Any]] = []
        self.fail_head = False
        self.fail_logs = False
        self.log_queries: list[tuple[int, int]] = []
        self._tx_counter = 0

    def add_lock(
        self,
        user: str,
        amount: int,
        block: int,
        log_index: int = 0,
        origin_chain_id: Optional[int] = None,
    ) -> str:
        self._tx_counter += 1
        tx_hash = bytes.fromhex(f"{self.chain.chain_id:08x}{self._tx_counter:056x}")
        self.logs.append(
            {
                "args": {
                    "user": user,
                    "amount": amount,
                    "originChainId": (
                        self.chain.chain_id if origin_chain_id is None else origin_chain_id
                    ),
                },
                "blockNumber": block,
                "logIndex": log_index,
                "transactionHash": tx_hash,
            }
        )
        return "0x" + tx_hash.hex()

    async def get_block_number(self) -> int:
        if self.fail_head:
            raise ConnectionError(f"{self.chain.name} RPC unreachable")
        return self.head

    async def get_lock_logs(self, from_block: int, to_block: int) -> list[dict[str, Any]]:
        if self.fail_logs:
            raise ConnectionError(f"{self.chain.name} eth_getLogs failed")
        self.log_queries.append((from_block, to_block))
        return [log for log in self.logs if from_block <= log["blockNumber"] <= to_block]


class FakeDestination:
    """Destination token that records mints and can fail on demand."""

    def __init__(self, decimals: int = 18):
        self._decimals = decimals
        self.minted: list[tuple[str, int]] = []
        self.receipts: dict[str, dict[str, Any]] = {}
        self.not_included: set[str] = set()
        self.fail_sends = 0
        self.timeout_waits = 0
        self.revert_next = 0
        self._nonce = 0

    async def decimals(self) -> int:
        return self._decimals

    async def send_mint(self, to: str, amount: int) -> str:
        if self.fail_sends:
            self.fail_sends -= 1
            raise ConnectionError("destination RPC unreachable")

        self._nonce += 1
        tx_hash = f"0x{self._nonce:064x}"
        status = 1
        if self.revert_next:
            self.revert_next -= 1
            status = 0
        self.minted.append((to, amount))
        self.receipts[tx_hash] = {"status": status, "gasUsed": 51_000}
        return tx_hash

    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> dict[str, Any]:
        if self.timeout_waits:
            self.timeout_waits -= 1
            raise TimeExhausted(f"Transaction {tx_hash} is not in the chain after {timeout} seconds")
        return self.receipts[tx_hash]

    async def get_receipt(self, tx_hash: str) -> Optional[dict[str, Any]]:
        if tx_hash in self.not_included:
            return None
        return self.receipts.get(tx_hash)


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    structlog.reset_defaults()


@pytest_asyncio.fixture
async def database(tmp_path) -> RelayerDatabase:
    db = RelayerDatabase(f"sqlite:///{tmp_path / 'relayer.db'}")
    await db.init()
    yield db
    await db.close()


@pytest.fixture
def store() -> CompletionStore:
    return CompletionStore()


@pytest.fixture
def destination() -> FakeDestination:
    return FakeDestination()


@pytest.fixture
def executor(destination, database, store) -> MintExecutor:
    return MintExecutor(
        destination=destination,
        database=database,
        store=store,
        confirmation_timeout=1.0,
        max_attempts=3,
        retry_base_delay=0,
        retry_max_delay=0,
    )


@pytest.fixture
def source_a() -> FakeSourceClient:
    return FakeSourceClient(CHAIN_A)


@pytest.fixture
def source_b() -> FakeSourceClient:
    return FakeSourceClient(CHAIN_B)
