"""
Tests for the chain watcher.
"""

import pytest

from teleport_relayer.watcher import ChainCursor, ChainWatcher, parse_deposit_log

from conftest import ALICE, BOB, CHAIN_A, ONE_AND_HALF, QUARTER


def _watcher(client, executor, database, cursor_block=100, max_block_range=2000):
    cursor = None
    if cursor_block is not None:
        cursor = ChainCursor(chain_id=client.chain.chain_id, last_scanned_block=cursor_block)
    return ChainWatcher(
        chain=client.chain,
        client=client,
        executor=executor,
        database=database,
        cursor=cursor,
        max_block_range=max_block_range,
    )


class TestChainCursor:
    def test_advance(self):
        cursor = ChainCursor(chain_id=1, last_scanned_block=10)
        cursor.advance(10)
        cursor.advance(15)
        assert cursor.last_scanned_block == 15

    def test_never_moves_back(self):
        cursor = ChainCursor(chain_id=1, last_scanned_block=10)
        with pytest.raises(ValueError, match="cannot move back"):
            cursor.advance(9)
        assert cursor.last_scanned_block == 10


class TestTick:
    @pytest.mark.asyncio
    async def test_idle_when_head_unchanged(self, source_a, executor, database):
        watcher = _watcher(source_a, executor, database, cursor_block=100)
        source_a.head = 100

        assert await watcher.tick() == 0
        assert source_a.log_queries == []
        assert watcher.cursor.last_scanned_block == 100

    @pytest.mark.asyncio
    async def test_scans_inclusive_range_and_advances(
        self, source_a, executor, database, destination
    ):
        watcher = _watcher(source_a, executor, database, cursor_block=100)
        source_a.head = 110
        source_a.add_lock(ALICE, ONE_AND_HALF, block=101)
        source_a.add_lock(BOB, QUARTER, block=110)

        assert await watcher.tick() == 2
        assert source_a.log_queries == [(101, 110)]
        assert watcher.cursor.last_scanned_block == 110
        assert await database.get_cursor(CHAIN_A.chain_id) == 110
        assert len(destination.minted) == 2

    @pytest.mark.asyncio
    async def test_mints_in_block_order(self, source_a, executor, database, destination):
        watcher = _watcher(source_a, executor, database, cursor_block=100)
        source_a.head = 105
        source_a.add_lock(ALICE, 3, block=104, log_index=0)
        source_a.add_lock(ALICE, 1, block=102, log_index=5)
        source_a.add_lock(ALICE, 2, block=104, log_index=1)
        source_a.logs.reverse()

        await watcher.tick()

        assert [amount for _, amount in destination.minted] == [1, 3, 2]

    @pytest.mark.asyncio
    async def test_amount_is_minted_one_to_one(self, source_a, executor, database, destination):
        watcher = _watcher(source_a, executor, database, cursor_block=100)
        source_a.head = 101
        source_a.add_lock(ALICE, ONE_AND_HALF, block=101)

        await watcher.tick()

        to, amount = destination.minted[0]
        assert to.lower() == ALICE
        assert amount == ONE_AND_HALF

    @pytest.mark.asyncio
    async def test_rpc_failure_keeps_cursor(self, source_a, executor, database, destination):
        watcher = _watcher(source_a, executor, database, cursor_block=100)
        source_a.head = 105
        source_a.add_lock(ALICE, ONE_AND_HALF, block=103)
        source_a.fail_logs = True

        with pytest.raises(ConnectionError):
            await watcher.tick()
        assert watcher.cursor.last_scanned_block == 100
        assert await database.get_cursor(CHAIN_A.chain_id) is None
        assert destination.minted == []

        # Same range re-observed on the next tick
        source_a.fail_logs = False
        assert await watcher.tick() == 1
        assert watcher.cursor.last_scanned_block == 105
        assert len(destination.minted) == 1

    @pytest.mark.asyncio
    async def test_rescan_does_not_mint_twice(self, source_a, executor, database, destination):
        source_a.head = 105
        source_a.add_lock(ALICE, ONE_AND_HALF, block=103)

        await _watcher(source_a, executor, database, cursor_block=100).tick()
        # A second watcher replaying the same range, as after a crash before the cursor save
        await _watcher(source_a, executor, database, cursor_block=100).tick()

        assert len(destination.minted) == 1

    @pytest.mark.asyncio
    async def test_first_tick_starts_at_head(self, source_a, executor, database):
        watcher = _watcher(source_a, executor, database, cursor_block=None)
        source_a.head = 500
        source_a.add_lock(ALICE, 1, block=400)

        assert await watcher.tick() == 0
        assert watcher.cursor.last_scanned_block == 500
        assert await database.get_cursor(CHAIN_A.chain_id) == 500
        assert source_a.log_queries == []

    @pytest.mark.asyncio
    async def test_large_gap_scanned_in_windows(self, source_a, executor, database):
        watcher = _watcher(source_a, executor, database, cursor_block=100, max_block_range=1000)
        source_a.head = 2600

        await watcher.tick()

        assert source_a.log_queries == [(101, 1100), (1101, 2100), (2101, 2600)]
        assert watcher.cursor.last_scanned_block == 2600

    @pytest.mark.asyncio
    async def test_malformed_event_skipped(self, source_a, executor, database, destination):
        watcher = _watcher(source_a, executor, database, cursor_block=100)
        source_a.head = 102
        source_a.add_lock(ALICE, ONE_AND_HALF, block=101)
        source_a.logs.append({"args": {"user": "not-an-address"}, "blockNumber": 101})
        source_a.add_lock(BOB, 0, block=102)

        assert await watcher.tick() == 1
        assert watcher.cursor.last_scanned_block == 102
        assert len(destination.minted) == 1


class TestParseDepositLog:
    def test_origin_mismatch_still_processed(self):
        log = {
            "args": {"user": ALICE, "amount": 5, "originChainId": 1},
            "blockNumber": 7,
            "logIndex": 2,
            "transactionHash": bytes.fromhex("ab" * 32),
        }

        event = parse_deposit_log(log, CHAIN_A)

        assert event is not None
        assert event.origin_chain_id == 1
        assert event.source_chain_id == CHAIN_A.chain_id
        assert event.tx_hash == "0x" + "ab" * 32
        assert event.key == (CHAIN_A.chain_id, "0x" + "ab" * 32, 2)

    def test_missing_fields(self):
        assert parse_deposit_log({"args": {}}, CHAIN_A) is None
