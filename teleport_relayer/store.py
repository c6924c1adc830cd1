"""
In-memory store of completed mints, drained by the status API.

Each user has a FIFO of unconsumed records and a short history of consumed
ones. A record is handed out at most once: consumption happens under the
store lock, together with the read.
"""

import asyncio
import threading
from collections import deque
from dataclasses import replace
from typing import Optional

import structlog

from .models import MintRecord

logger = structlog.get_logger()

DEFAULT_KEEP_CONSUMED = 5


def _wake(future: asyncio.Future) -> None:
    if not future.done():
        future.set_result(None)


class CompletionStore:
    """
    Per-user completion records with consume-once semantics.

    Safe to use from the event loop and from worker threads.
    """

    def __init__(self, keep_consumed: int = DEFAULT_KEEP_CONSUMED):
        self.keep_consumed = keep_consumed
        self._pending: dict[str, deque[MintRecord]] = {}
        self._consumed: dict[str, deque[MintRecord]] = {}
        self._waiters: dict[str, list[tuple[asyncio.AbstractEventLoop, asyncio.Future]]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(address: str) -> str:
        return address.lower()

    def append(self, record: MintRecord) -> None:
        """Add a new unconsumed record to the depositor's queue."""
        key = self._key(record.depositor)
        with self._lock:
            self._pending.setdefault(key, deque()).append(replace(record, consumed=False))
            waiters = self._waiters.pop(key, [])

        for loop, future in waiters:
            loop.call_soon_threadsafe(_wake, future)

        logger.info(
            "mint_completion_stored",
            depositor=record.depositor,
            tx_hash=record.tx_hash,
            source_chain=record.source_chain,
        )

    def consume_next(self, address: str) -> Optional[MintRecord]:
        """
        Return the oldest unconsumed record for address, marking it consumed.

        Returns None when nothing is pending.
        """
        with self._lock:
            return self._consume_locked(self._key(address))

    def _consume_locked(self, key: str) -> Optional[MintRecord]:
        pending = self._pending.get(key)
        if not pending:
            return None

        record = pending.popleft()
        if not pending:
            del self._pending[key]

        record.consumed = True
        history = self._consumed.setdefault(key, deque(maxlen=self.keep_consumed))
        history.append(record)
        return replace(record)

    async def wait_for_next(self, address: str, timeout: float) -> Optional[MintRecord]:
        """
        Consume the next record for address, waiting up to timeout seconds.

        Returns None if nothing arrived in time.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        key = self._key(address)

        while True:
            with self._lock:
                record = self._consume_locked(key)
                if record is not None:
                    return record
                remaining = deadline - loop.time()
                if remaining <= 0:
                    return None
                future = loop.create_future()
                self._waiters.setdefault(key, []).append((loop, future))

            try:
                await asyncio.wait_for(future, remaining)
            except asyncio.TimeoutError:
                pass
            finally:
                self._discard_waiter(key, future)

    def _discard_waiter(self, key: str, future: asyncio.Future) -> None:
        with self._lock:
            waiters = self._waiters.get(key)
            if not waiters:
                return
            remaining = [(l, f) for l, f in waiters if f is not future]
            if remaining:
                self._waiters[key] = remaining
            else:
                del self._waiters[key]

    def pending_count(self, address: str) -> int:
        with self._lock:
            return len(self._pending.get(self._key(address), ()))

    def records(self, address: str) -> list[MintRecord]:
        """Copies of the user's records: pending first, then consumed history."""
        key = self._key(address)
        with self._lock:
            pending = list(self._pending.get(key, ()))
            consumed = list(self._consumed.get(key, ()))
        return [replace(r) for r in pending + consumed]
