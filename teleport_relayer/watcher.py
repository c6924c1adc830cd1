"""
Source chain watcher.

Scans one source chain's lock contract for deposit events in the block range
between its cursor and the current head, and hands each event to the mint
executor in (block, log index) order.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Protocol

import structlog
from web3 import Web3

from .config import SourceChainConfig
from .db import RelayerDatabase, utcnow
from .models import DepositEvent, MintRecord

logger = structlog.get_logger()


class LockEventSource(Protocol):
    """What the watcher needs from a source chain client."""

    async def get_block_number(self) -> int: ...

    async def get_lock_logs(self, from_block: int, to_block: int) -> list[Any]: ...


class DepositHandler(Protocol):
    async def execute(self, event: DepositEvent) -> Optional[MintRecord]: ...


@dataclass
class ChainCursor:
    """Highest block of a chain whose events were fully processed."""

    chain_id: int
    last_scanned_block: int

    def advance(self, height: int) -> None:
        """Move the cursor to height. Cursors never move backwards."""
        if height < self.last_scanned_block:
            raise ValueError(
                f"Cursor for chain {self.chain_id} cannot move back "
                f"from {self.last_scanned_block} to {height}"
            )
        self.last_scanned_block = height


@dataclass
class WatcherStatus:
    """Outcome of a watcher's recent ticks."""

    last_tick_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None
    last_error: Optional[str] = None
    consecutive_failures: int = 0
    events_processed: int = 0


def _to_hex(value: Any) -> str:
    if isinstance(value, str):
        value = value.lower()
        return value if value.startswith("0x") else f"0x{value}"
    return Web3.to_hex(value)


def parse_deposit_log(log: Any, chain: SourceChainConfig) -> Optional[DepositEvent]:
    """
    Turn a decoded lock log into a DepositEvent.

    Returns None (and logs) if the log is malformed.
    """
    try:
        args = log["args"]
        event = DepositEvent(
            depositor=Web3.to_checksum_address(args["user"]),
            amount=int(args["amount"]),
            origin_chain_id=int(args["originChainId"]),
            block_number=int(log["blockNumber"]),
            tx_hash=_to_hex(log["transactionHash"]),
            log_index=int(log["logIndex"]),
            source_chain=chain.name,
            source_chain_id=chain.chain_id,
        )
    except (KeyError, TypeError, ValueError) as e:
        logger.warning("malformed_deposit_event", chain=chain.name, error=str(e))
        return None

    if event.amount <= 0:
        logger.warning(
            "deposit_event_skipped",
            chain=chain.name,
            tx_hash=event.tx_hash,
            log_index=event.log_index,
            reason="non-positive amount",
        )
        return None

    if event.origin_chain_id != chain.chain_id:
        logger.warning(
            "origin_chain_mismatch",
            chain=chain.name,
            configured_chain_id=chain.chain_id,
            origin_chain_id=event.origin_chain_id,
            tx_hash=event.tx_hash,
        )

    return event


class ChainWatcher:
    """
    Watches one source chain for lock events.

    The cursor starts at the persisted position. A chain seen for the first
    time starts at its head on the first successful tick.
    """

    def __init__(
        self,
        chain: SourceChainConfig,
        client: LockEventSource,
        executor: DepositHandler,
        database: RelayerDatabase,
        cursor: Optional[ChainCursor] = None,
        max_block_range: int = 2000,
    ):
        self.chain = chain
        self.client = client
        self.executor = executor
        self.db = database
        self.cursor = cursor
        self.max_block_range = max_block_range
        self.status = WatcherStatus()

    @property
    def name(self) -> str:
        return self.chain.name

    async def tick(self) -> int:
        """
        Process all new blocks up to the current head.

        Returns the number of deposit events handed to the executor.
        RPC errors propagate; the cursor then stays where it was.
        """
        head = await self.client.get_block_number()

        if self.cursor is None:
            self.cursor = ChainCursor(chain_id=self.chain.chain_id, last_scanned_block=head)
            await self.db.save_cursor(self.chain.chain_id, self.chain.name, head)
            logger.info("cursor_initialized", chain=self.name, block=head)
            return 0

        if head <= self.cursor.last_scanned_block:
            logger.debug("chain_idle", chain=self.name, head=head)
            return 0

        handled = 0
        start = self.cursor.last_scanned_block + 1
        while start <= head:
            end = min(start + self.max_block_range - 1, head)
            handled += await self._process_range(start, end)
            start = end + 1
        return handled

    async def _process_range(self, from_block: int, to_block: int) -> int:
        logger.info(
            "scanning_blocks",
            chain=self.name,
            from_block=from_block,
            to_block=to_block,
        )

        logs = await self.client.get_lock_logs(from_block, to_block)

        events = []
        for log in logs:
            event = parse_deposit_log(log, self.chain)
            if event is not None:
                events.append(event)
        events.sort(key=lambda e: (e.block_number, e.log_index))

        for event in events:
            logger.info(
                "deposit_detected",
                chain=self.name,
                depositor=event.depositor,
                amount=str(event.amount),
                origin_chain_id=event.origin_chain_id,
                block=event.block_number,
            )
            await self.executor.execute(event)

        self.cursor.advance(to_block)
        await self.db.save_cursor(self.chain.chain_id, self.chain.name, to_block)
        return len(events)

    def record_success(self, handled: int) -> None:
        now = utcnow()
        self.status.last_tick_at = now
        self.status.last_success_at = now
        self.status.last_error = None
        self.status.consecutive_failures = 0
        self.status.events_processed += handled

    def record_failure(self, error: BaseException) -> None:
        self.status.last_tick_at = utcnow()
        self.status.last_error = str(error) or type(error).__name__
        self.status.consecutive_failures += 1
