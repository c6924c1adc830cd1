"""
Polling scheduler - drives all chain watchers on a fixed cadence.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence, Union

import structlog

from .db import utcnow
from .executor import MintExecutor
from .watcher import ChainWatcher

logger = structlog.get_logger()


@dataclass
class SchedulerState:
    """Current scheduler state."""

    is_running: bool = False
    rounds: int = 0
    last_round_at: Optional[datetime] = None


class Scheduler:
    """
    Runs every chain watcher concurrently each round.

    A round waits for all watchers to settle; a failing chain only loses its
    own tick. The next round starts poll_interval_seconds after the previous
    one completed.
    """

    def __init__(
        self,
        watchers: Sequence[ChainWatcher],
        executor: Optional[MintExecutor] = None,
        poll_interval_seconds: float = 15.0,
    ):
        self.watchers = list(watchers)
        self.executor = executor
        self.poll_interval_seconds = poll_interval_seconds
        self.state = SchedulerState()
        self._stop_event = asyncio.Event()

    async def run_once(self) -> dict[str, Union[int, BaseException]]:
        """
        Run one round.

        Returns per-chain results: number of events handled, or the error.
        """
        results = await asyncio.gather(
            *(watcher.tick() for watcher in self.watchers),
            return_exceptions=True,
        )

        outcome: dict[str, Union[int, BaseException]] = {}
        for watcher, result in zip(self.watchers, results):
            outcome[watcher.name] = result
            if isinstance(result, BaseException):
                watcher.record_failure(result)
                logger.error(
                    "chain_poll_failed",
                    chain=watcher.name,
                    error=str(result) or type(result).__name__,
                    consecutive_failures=watcher.status.consecutive_failures,
                )
            else:
                watcher.record_success(result)

        if self.executor is not None:
            try:
                retried = await self.executor.retry_due()
                if retried:
                    logger.info("mint_retries_completed", count=retried)
            except Exception as e:
                logger.error("mint_retry_pass_failed", error=str(e))

        self.state.rounds += 1
        self.state.last_round_at = utcnow()
        return outcome

    async def run(self) -> None:
        """Run rounds until stop() is called."""
        self.state.is_running = True
        self._stop_event.clear()

        logger.info(
            "scheduler_starting",
            chains=[w.name for w in self.watchers],
            poll_interval=self.poll_interval_seconds,
        )

        while self.state.is_running:
            await self.run_once()

            try:
                await asyncio.wait_for(self._stop_event.wait(), self.poll_interval_seconds)
            except asyncio.TimeoutError:
                pass

        logger.info("scheduler_stopped", rounds=self.state.rounds)

    def stop(self) -> None:
        """Stop after the current round."""
        self.state.is_running = False
        self._stop_event.set()
        logger.info("scheduler_stopping")
