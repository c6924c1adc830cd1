"""
Relayer wiring - source watchers, mint executor, completion store.
"""

from typing import Optional

import structlog

from .config import ConfigurationError, RelayerConfig, SourceChainConfig
from .db import RelayerDatabase
from .evm import DestinationClient, SourceChainClient
from .executor import MintExecutor
from .models import ChainStatusResponse
from .scheduler import Scheduler
from .store import CompletionStore
from .watcher import ChainCursor, ChainWatcher, LockEventSource

logger = structlog.get_logger()


class TeleportRelayer:
    """
    Lock-and-mint relayer:
    1. Watches lock events on every configured source chain
    2. Mints the locked amount on the destination token
    3. Keeps completion records for the status API
    """

    def __init__(
        self,
        config: RelayerConfig,
        destination: Optional[DestinationClient] = None,
        source_clients: Optional[dict[int, LockEventSource]] = None,
        database: Optional[RelayerDatabase] = None,
        store: Optional[CompletionStore] = None,
    ):
        config.validate(require_destination=destination is None)

        self.config = config
        settings = config.settings

        self.db = database or RelayerDatabase(settings.database_url)
        self.store = store or CompletionStore(keep_consumed=settings.keep_consumed)

        self.destination = destination or DestinationClient(
            rpc_url=settings.dst_rpc,
            private_key=settings.private_key,
            token_address=settings.token_contract,
            gas_limit=settings.mint_gas_limit,
        )

        self.executor = MintExecutor(
            destination=self.destination,
            database=self.db,
            store=self.store,
            confirmation_timeout=settings.confirmation_timeout_seconds,
            max_attempts=settings.max_mint_attempts,
            retry_base_delay=settings.retry_base_delay_seconds,
            retry_max_delay=settings.retry_max_delay_seconds,
        )

        self.source_clients: dict[int, LockEventSource] = source_clients or {
            chain.chain_id: SourceChainClient(chain, event_name=settings.lock_event_name)
            for chain in config.source_chains
        }

        self.watchers: list[ChainWatcher] = []
        self.scheduler: Optional[Scheduler] = None

        logger.info(
            "relayer_initialized",
            chains=[c.name for c in config.source_chains],
            poll_interval=settings.poll_interval_seconds,
            lock_event=settings.lock_event_name,
        )

    async def start(self) -> Scheduler:
        """
        Validate the destination token and build the watchers.

        Raises ConfigurationError if a source chain's decimals differ from
        the destination token's.
        """
        if self.scheduler is not None:
            return self.scheduler

        await self._validate_decimals()
        await self.db.init()
        await self.executor.recover_interrupted()

        self.watchers = [
            ChainWatcher(
                chain=chain,
                client=self.source_clients[chain.chain_id],
                executor=self.executor,
                database=self.db,
                cursor=await self._load_cursor(chain),
                max_block_range=self.config.settings.max_block_range,
            )
            for chain in self.config.source_chains
        ]
        self.scheduler = Scheduler(
            self.watchers,
            executor=self.executor,
            poll_interval_seconds=self.config.settings.poll_interval_seconds,
        )
        return self.scheduler

    async def _validate_decimals(self) -> None:
        decimals = await self.destination.decimals()
        for chain in self.config.source_chains:
            if chain.decimals != decimals:
                raise ConfigurationError(
                    f"{chain.name} has {chain.decimals} decimals but the destination "
                    f"token has {decimals}; 1:1 minting would credit wrong amounts"
                )
        logger.info("decimals_validated", decimals=decimals)

    async def _load_cursor(self, chain: SourceChainConfig) -> Optional[ChainCursor]:
        """Resume from the persisted cursor, else from the configured start block."""
        persisted = await self.db.get_cursor(chain.chain_id)
        if persisted is not None:
            logger.info("cursor_resumed", chain=chain.name, block=persisted)
            return ChainCursor(chain_id=chain.chain_id, last_scanned_block=persisted)

        if chain.start_block is not None:
            block = max(chain.start_block - 1, 0)
            await self.db.save_cursor(chain.chain_id, chain.name, block)
            logger.info("cursor_from_start_block", chain=chain.name, block=block)
            return ChainCursor(chain_id=chain.chain_id, last_scanned_block=block)

        # First run: the watcher starts at the chain head
        return None

    async def run_once(self) -> None:
        """Start if needed and run a single polling round."""
        scheduler = await self.start()
        await scheduler.run_once()

    async def run(self) -> None:
        """Run the relayer continuously."""
        scheduler = await self.start()
        await scheduler.run()

    def stop(self) -> None:
        """Stop the relayer."""
        if self.scheduler is not None:
            self.scheduler.stop()
        logger.info("relayer_stopping")

    async def close(self) -> None:
        """Release the database connections."""
        await self.db.close()

    async def chain_statuses(self) -> list[ChainStatusResponse]:
        """Cursor and tick status of every configured chain."""
        watchers = {w.chain.chain_id: w for w in self.watchers}
        statuses = []
        for chain in self.config.source_chains:
            watcher = watchers.get(chain.chain_id)
            if watcher is None:
                statuses.append(
                    ChainStatusResponse(
                        name=chain.name,
                        chain_id=chain.chain_id,
                        last_scanned_block=await self.db.get_cursor(chain.chain_id),
                    )
                )
                continue
            statuses.append(
                ChainStatusResponse(
                    name=chain.name,
                    chain_id=chain.chain_id,
                    last_scanned_block=(
                        watcher.cursor.last_scanned_block if watcher.cursor else None
                    ),
                    consecutive_failures=watcher.status.consecutive_failures,
                    last_error=watcher.status.last_error,
                    last_success_at=watcher.status.last_success_at,
                    events_processed=watcher.status.events_processed,
                )
            )
        return statuses
