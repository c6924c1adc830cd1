"""
Mint executor - turns deposit events into confirmed mints.
"""

import asyncio
import time
from datetime import timedelta
from typing import Any, Optional, Protocol

import structlog
from web3.exceptions import TimeExhausted

from .db import RelayerDatabase, utcnow
from .evm import MintResult
from .models import DepositEvent, MintRecord
from .store import CompletionStore

logger = structlog.get_logger()


class MintTarget(Protocol):
    """What the executor needs from the destination chain client."""

    async def send_mint(self, to: str, amount: int) -> str: ...

    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> Any: ...

    async def get_receipt(self, tx_hash: str) -> Optional[Any]: ...


class MintExecutor:
    """
    Mints the deposited amount (1:1, no conversion) to the depositor.

    1. Records the deposit in the ledger (skips known deposits)
    2. Sends mint(depositor, amount) and waits for inclusion
    3. Appends a MintRecord to the completion store

    Failed mints go to the retry queue with exponential backoff and end in
    the dead-letter state after max_attempts.
    """

    def __init__(
        self,
        destination: MintTarget,
        database: RelayerDatabase,
        store: CompletionStore,
        confirmation_timeout: float = 120.0,
        max_attempts: int = 5,
        retry_base_delay: float = 30.0,
        retry_max_delay: float = 900.0,
        stale_after: Optional[float] = None,
    ):
        self.destination = destination
        self.db = database
        self.store = store
        self.confirmation_timeout = confirmation_timeout
        self.max_attempts = max_attempts
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay
        # Rows pending or submitted for longer than this were abandoned mid-attempt
        self.stale_after = (
            stale_after if stale_after is not None else 2 * confirmation_timeout + 60
        )
        # One signer: broadcasts from concurrently ticking chains must not race on the nonce
        self._send_lock = asyncio.Lock()

    def backoff_delay(self, attempts: int) -> float:
        """Delay before retry number `attempts` (1-based)."""
        return min(self.retry_base_delay * (2 ** (attempts - 1)), self.retry_max_delay)

    async def execute(self, event: DepositEvent) -> Optional[MintRecord]:
        """
        Mint for a newly observed deposit.

        Returns the MintRecord on success, None if the deposit was already
        known or the mint failed (it is then queued for retry).
        """
        if not await self.db.record_deposit(event):
            logger.info(
                "deposit_already_recorded",
                chain=event.source_chain,
                tx_hash=event.tx_hash,
                log_index=event.log_index,
            )
            return None

        return await self._attempt(event, attempts=0, previous_tx_hash=None)

    async def retry_due(self) -> int:
        """
        Retry failed mints whose backoff has elapsed.

        Rows abandoned in the pending or submitted state are queued first.
        Returns the number of deposits completed.
        """
        now = utcnow()
        stale = await self.db.requeue_interrupted(
            updated_before=now - timedelta(seconds=self.stale_after)
        )
        if stale:
            logger.warning("stale_mints_requeued", count=stale)

        entries = await self.db.get_due_retries(utcnow())
        completed = 0

        for entry in entries:
            logger.info(
                "mint_retry",
                chain=entry.source_chain,
                tx_hash=entry.tx_hash,
                log_index=entry.log_index,
                attempt=entry.attempts + 1,
            )
            record = await self._attempt(entry.to_event(), entry.attempts, entry.mint_tx_hash)
            if record is not None:
                completed += 1

        return completed

    async def recover_interrupted(self) -> int:
        """Queue deposits a previous run left unfinished."""
        count = await self.db.requeue_interrupted()
        if count:
            logger.warning("interrupted_mints_requeued", count=count)
        return count

    async def _attempt(
        self,
        event: DepositEvent,
        attempts: int,
        previous_tx_hash: Optional[str],
    ) -> Optional[MintRecord]:
        """One mint attempt. Errors after the ledger insert end on the retry queue."""
        mint_tx_hash = previous_tx_hash
        try:
            if previous_tx_hash:
                # A mint was already broadcast: resolve it before sending another
                try:
                    receipt = await self.destination.get_receipt(previous_tx_hash)
                except Exception as e:
                    return await self._fail(
                        event, attempts + 1, f"receipt lookup failed: {e}", previous_tx_hash
                    )

                if receipt is None:
                    return await self._fail(
                        event, attempts + 1, "mint transaction not included yet", previous_tx_hash
                    )
                if receipt["status"] == 1:
                    return await self._complete(
                        event, previous_tx_hash, receipt.get("gasUsed")
                    )

                logger.warning(
                    "previous_mint_reverted",
                    chain=event.source_chain,
                    mint_tx_hash=previous_tx_hash,
                )

            result = await self._submit(event)
            if result.tx_hash:
                mint_tx_hash = result.tx_hash
            if result.success:
                return await self._complete(event, result.tx_hash, result.gas_used)

            return await self._fail(
                event,
                attempts + 1,
                result.error,
                result.tx_hash if result.pending else None,
            )

        except Exception as e:
            logger.error(
                "mint_attempt_error",
                chain=event.source_chain,
                tx_hash=event.tx_hash,
                log_index=event.log_index,
                mint_tx_hash=mint_tx_hash,
                error=str(e),
            )
            return await self._fail(event, attempts + 1, str(e), mint_tx_hash)

    async def _submit(self, event: DepositEvent) -> MintResult:
        """Send the mint and wait for inclusion."""
        tx_hash = None
        try:
            async with self._send_lock:
                tx_hash = await self.destination.send_mint(event.depositor, event.amount)
            await self.db.mark_submitted(*event.key, tx_hash)

            logger.info(
                "mint_tx_sent",
                chain=event.source_chain,
                tx_hash=tx_hash,
                depositor=event.depositor,
                amount=str(event.amount),
            )

            receipt = await self.destination.wait_for_receipt(tx_hash, self.confirmation_timeout)

        except TimeExhausted:
            logger.warning(
                "mint_confirmation_timeout",
                chain=event.source_chain,
                tx_hash=tx_hash,
                timeout=self.confirmation_timeout,
            )
            return MintResult(
                success=False, tx_hash=tx_hash, pending=True, error="Confirmation timeout"
            )

        except Exception as e:
            logger.error(
                "mint_submission_error",
                chain=event.source_chain,
                depositor=event.depositor,
                tx_hash=tx_hash,
                error=str(e),
            )
            return MintResult(
                success=False, tx_hash=tx_hash, pending=tx_hash is not None, error=str(e)
            )

        if receipt["status"] != 1:
            logger.error("mint_tx_reverted", chain=event.source_chain, tx_hash=tx_hash)
            return MintResult(success=False, tx_hash=tx_hash, error="Transaction reverted")

        return MintResult(success=True, tx_hash=tx_hash, gas_used=receipt.get("gasUsed"))

    async def _complete(
        self, event: DepositEvent, mint_tx_hash: str, gas_used: Optional[int] = None
    ) -> MintRecord:
        await self.db.mark_confirmed(*event.key, mint_tx_hash)

        record = MintRecord(
            depositor=event.depositor,
            tx_hash=mint_tx_hash,
            amount=event.amount,
            timestamp=int(time.time() * 1000),
            source_chain=event.source_chain,
        )
        self.store.append(record)

        logger.info(
            "mint_confirmed",
            chain=event.source_chain,
            depositor=event.depositor,
            amount=str(event.amount),
            tx_hash=mint_tx_hash,
            gas_used=gas_used,
        )
        return record

    async def _fail(
        self,
        event: DepositEvent,
        attempts: int,
        error: Optional[str],
        mint_tx_hash: Optional[str],
    ) -> None:
        if attempts >= self.max_attempts:
            await self.db.mark_dead_letter(*event.key, attempts, error, mint_tx_hash)
            logger.error(
                "mint_dead_lettered",
                chain=event.source_chain,
                tx_hash=event.tx_hash,
                log_index=event.log_index,
                depositor=event.depositor,
                amount=str(event.amount),
                attempts=attempts,
                error=error,
            )
            return None

        delay = self.backoff_delay(attempts)
        await self.db.mark_failed(
            *event.key,
            attempts,
            utcnow() + timedelta(seconds=delay),
            error,
            mint_tx_hash,
        )
        logger.warning(
            "mint_failed",
            chain=event.source_chain,
            tx_hash=event.tx_hash,
            log_index=event.log_index,
            attempts=attempts,
            retry_in=delay,
            error=error,
        )
        return None
