import asyncio
import logging
from typing import Dict, List
from unittest.mock import AsyncMock, patch

import pytest
from web3 import Web3

from exporter.node.aggregator import NodeMetricsAggregator
from exporter.node.eth1 import ExecutionClient
from exporter.node.eth2 import BeaconClientError
from exporter.node.ledger import RewardsLedger
from exporter.node.state import StateLocker
from exporter.node.tests.factories import (
    faker,
    get_minipool_details,
    get_network_state,
    get_node_details,
)
from exporter.node.types import (
    BeaconHead,
    ClaimStatus,
    IntervalInfo,
    ValidatorDetails,
)

node_address = faker.eth_address()
block_number = faker.random_int(15000000, 20000000)
beacon_head = BeaconHead(
    epoch=200000,
    slot=200000 * 32,
    finalized_epoch=199998,
    justified_epoch=199999,
    previous_justified_epoch=199998,
)


class FakeRewardsResolver:
    def __init__(
        self,
        intervals: Dict[int, IntervalInfo],
        claimed: List[int] = None,
        unclaimed: List[int] = None,
    ):
        self.intervals = intervals
        self.claimed = claimed or []
        self.unclaimed = unclaimed or []
        self.requested: List[int] = []

    async def get_claim_status(self, address):
        return ClaimStatus(unclaimed=list(self.unclaimed), claimed=list(self.claimed))

    async def get_interval_info(self, address, interval):
        self.requested.append(interval)
        return self.intervals[interval]


class BlockingRewardsResolver(FakeRewardsResolver):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.calls: List[str] = []
        self.release = asyncio.Event()

    async def get_claim_status(self, address):
        self.calls.append("claim_status")
        await self.release.wait()
        return await super().get_claim_status(address)


class RecordingLedger(RewardsLedger):
    def __init__(self, calls: List[str]):
        super().__init__()
        self.calls = calls

    def commit(self, intervals, block_number):
        super().commit(intervals, block_number)
        self.calls.append("commit")


def get_interval(index, rpl=0, eth=0, exists=True, node_exists=True) -> IntervalInfo:
    return IntervalInfo(
        index=index,
        tree_file_path=f"/rewards-trees/rp-rewards-mainnet-{index}.json",
        tree_file_exists=exists,
        node_exists=node_exists,
        collateral_rpl_amount=Web3.to_wei(rpl, "ether"),
        smoothing_pool_eth_amount=Web3.to_wei(eth, "ether"),
    )


def get_execution_client():
    execution_client = AsyncMock(spec=ExecutionClient)
    execution_client.get_latest_block_number.return_value = block_number
    return execution_client


def get_aggregator(
    state,
    resolver,
    total_effective_stake=Web3.to_wei(100, "ether"),
    execution_client=None,
    ledger=None,
):
    state_locker = StateLocker()
    if state is not None:
        state_locker.update_state(state, total_effective_stake)
    return NodeMetricsAggregator(
        node_address=node_address,
        state_locker=state_locker,
        execution_client=execution_client or get_execution_client(),
        rewards_resolver=resolver,
        beacon_session=None,
        ledger=ledger,
    )


class TestNodeMetricsAggregator:
    async def _collect(self, aggregator, head_side_effect=None):
        with patch(
            "exporter.node.aggregator.get_beacon_head",
            return_value=beacon_head,
            side_effect=head_side_effect,
        ):
            return await aggregator.collect()

    async def test_no_state(self):
        resolver = FakeRewardsResolver({})
        aggregator = get_aggregator(None, resolver)
        with patch("exporter.node.aggregator.get_beacon_head") as head_mock:
            assert await aggregator.collect() is None
        head_mock.assert_not_called()
        assert resolver.requested == []

    async def test_no_total_effective_stake(self):
        resolver = FakeRewardsResolver({0: get_interval(0, rpl=5)}, claimed=[0])
        aggregator = get_aggregator(
            get_network_state(node_address), resolver, total_effective_stake=None
        )
        assert await self._collect(aggregator) is None
        assert resolver.requested == []
        assert aggregator.ledger.handled_intervals == set()

    async def test_unknown_node(self):
        resolver = FakeRewardsResolver({})
        aggregator = get_aggregator(get_network_state(faker.eth_address()), resolver)
        assert await self._collect(aggregator) is None

    async def test_rewards_estimate(self):
        aggregator = get_aggregator(
            get_network_state(node_address), FakeRewardsResolver({})
        )
        metrics = await self._collect(aggregator)

        issuance = (1.00015**28 - 1) * 20_000_000
        expected_rewards = 10 / 100 * issuance * 0.7071
        assert metrics.expected_rpl_rewards == pytest.approx(expected_rewards)
        assert metrics.rpl_apr == pytest.approx(
            expected_rewards / 10 * (24 * 365 / (28 * 24)) * 100
        )
        assert metrics.total_staked_rpl == 10
        assert metrics.effective_staked_rpl == 10
        assert metrics.eth_balance == 1
        assert metrics.old_rpl_balance == 2
        assert metrics.new_rpl_balance == 3
        assert metrics.reth_balance == 4

    async def test_zero_total_effective_stake(self):
        aggregator = get_aggregator(
            get_network_state(node_address),
            FakeRewardsResolver({}),
            total_effective_stake=0,
        )
        metrics = await self._collect(aggregator)
        assert metrics.expected_rpl_rewards == 0
        assert metrics.rpl_apr == 0

    async def test_zero_staked_rpl(self):
        state = get_network_state(
            node_address, node_details=get_node_details(rpl_stake=0)
        )
        metrics = await self._collect(
            get_aggregator(state, FakeRewardsResolver({}))
        )
        assert metrics.expected_rpl_rewards > 0
        assert metrics.rpl_apr == 0
        assert metrics.rpl_collateral == 0

    async def test_minipools(self):
        minipools = [
            get_minipool_details(),
            get_minipool_details(),
            get_minipool_details(finalised=True),
        ]
        state = get_network_state(node_address, minipools=minipools)
        metrics = await self._collect(get_aggregator(state, FakeRewardsResolver({})))

        assert metrics.active_minipool_count == 2
        assert metrics.rpl_collateral == pytest.approx(0.01 * 10 / (2 * 16.0))

        # validators are not known yet, deposits are used instead
        assert metrics.deposited_eth == pytest.approx(48)
        assert metrics.beacon_share == pytest.approx(48)
        assert metrics.beacon_balance == pytest.approx(96)

        assert metrics.total_eth_rewards_share_skimmed == pytest.approx(1.5)
        assert metrics.total_refund_eth_skimmed == pytest.approx(0.75)
        assert metrics.total_eth_rewards_skimmed == pytest.approx(3)

    async def test_no_active_minipools(self):
        state = get_network_state(
            node_address, minipools=[get_minipool_details(finalised=True)]
        )
        metrics = await self._collect(get_aggregator(state, FakeRewardsResolver({})))
        assert metrics.active_minipool_count == 0
        assert metrics.rpl_collateral == 0

    async def test_active_validator_balance(self):
        minipool = get_minipool_details()
        state = get_network_state(node_address, minipools=[minipool])
        state.validator_details[minipool.pubkey] = ValidatorDetails(
            exists=True, balance=33 * 10**9, activation_epoch=100
        )
        execution_client = get_execution_client()
        execution_client.calculate_node_share.return_value = Web3.to_wei(17, "ether")

        metrics = await self._collect(
            get_aggregator(
                state, FakeRewardsResolver({}), execution_client=execution_client
            )
        )
        execution_client.calculate_node_share.assert_awaited_once_with(
            minipool.address, Web3.to_wei(33, "ether"), state.el_block_number
        )
        assert metrics.deposited_eth == pytest.approx(16)
        assert metrics.beacon_share == pytest.approx(17)
        assert metrics.beacon_balance == pytest.approx(33)

    async def test_balance_resolution_failure(self):
        minipool = get_minipool_details()
        state = get_network_state(node_address, minipools=[minipool])
        state.validator_details[minipool.pubkey] = ValidatorDetails(
            exists=True, balance=32 * 10**9, activation_epoch=100
        )
        execution_client = get_execution_client()
        execution_client.calculate_node_share.side_effect = ConnectionError("down")

        metrics = await self._collect(
            get_aggregator(
                state, FakeRewardsResolver({}), execution_client=execution_client
            )
        )
        assert metrics is None

    async def test_claimed_interval_counted_once(self):
        resolver = FakeRewardsResolver(
            {0: get_interval(0, rpl=5, eth=1), 1: get_interval(1, rpl=7, eth=2)},
            claimed=[0, 1],
        )
        aggregator = get_aggregator(get_network_state(node_address), resolver)

        first = await self._collect(aggregator)
        second = await self._collect(aggregator)

        assert first.cumulative_rpl_rewards == pytest.approx(12)
        assert first.claimed_eth_rewards == pytest.approx(3)
        assert second.cumulative_rpl_rewards == pytest.approx(12)
        assert second.claimed_eth_rewards == pytest.approx(3)
        assert resolver.requested == [0, 1]
        assert aggregator.ledger.handled_intervals == {0, 1}
        assert aggregator.ledger.next_rewards_start_block == block_number + 1

    async def test_cumulative_rewards_never_decrease(self):
        resolver = FakeRewardsResolver(
            {
                0: get_interval(0, rpl=5),
                1: get_interval(1, rpl=7),
                2: get_interval(2, rpl=3),
            },
            claimed=[0],
            unclaimed=[1, 2],
        )
        aggregator = get_aggregator(get_network_state(node_address), resolver)

        totals = []
        for claimed in ([0], [0, 1], [0, 1], [0, 1, 2]):
            resolver.claimed = claimed
            resolver.unclaimed = [i for i in (1, 2) if i not in claimed]
            metrics = await self._collect(aggregator)
            totals.append(metrics.cumulative_rpl_rewards)

        assert totals == sorted(totals)
        assert totals[-1] == pytest.approx(15)

    async def test_unclaimed_rewards(self):
        resolver = FakeRewardsResolver(
            {
                3: get_interval(3, rpl=4, eth=0.5),
                4: get_interval(4, rpl=100, eth=100, node_exists=False),
                5: get_interval(5, rpl=1, eth=0.25),
            },
            unclaimed=[3, 4, 5],
        )
        aggregator = get_aggregator(get_network_state(node_address), resolver)
        metrics = await self._collect(aggregator)

        assert metrics.unclaimed_rpl_rewards == pytest.approx(5)
        assert metrics.unclaimed_eth_rewards == pytest.approx(0.75)
        assert metrics.cumulative_rpl_rewards == 0
        assert aggregator.ledger.handled_intervals == set()

    async def test_missing_claimed_rewards_file(self):
        resolver = FakeRewardsResolver(
            {0: get_interval(0, rpl=5), 1: get_interval(1, rpl=7, exists=False)},
            claimed=[0, 1],
        )
        aggregator = get_aggregator(get_network_state(node_address), resolver)

        assert await self._collect(aggregator) is None
        assert aggregator.ledger.handled_intervals == set()
        assert aggregator.ledger.cumulative_rpl_rewards == 0
        assert aggregator.ledger.next_rewards_start_block is None

    async def test_missing_unclaimed_rewards_file(self):
        resolver = FakeRewardsResolver(
            {0: get_interval(0, rpl=5), 1: get_interval(1, exists=False)},
            claimed=[0],
            unclaimed=[1],
        )
        aggregator = get_aggregator(get_network_state(node_address), resolver)

        assert await self._collect(aggregator) is None
        assert aggregator.ledger.handled_intervals == set()

    async def test_latest_block_failure_keeps_ledger(self):
        resolver = FakeRewardsResolver({0: get_interval(0, rpl=5)}, claimed=[0])
        execution_client = get_execution_client()
        execution_client.get_latest_block_number.side_effect = ConnectionError(
            "connection refused"
        )
        aggregator = get_aggregator(
            get_network_state(node_address), resolver, execution_client=execution_client
        )

        assert await self._collect(aggregator) is None
        assert aggregator.ledger.handled_intervals == set()
        assert aggregator.ledger.cumulative_rpl_rewards == 0

    async def test_beacon_failure_advances_ledger(self, caplog):
        # the rewards unit commits before the join, so a failed beacon lookup
        # drops the samples of this cycle but keeps the ledger update
        resolver = FakeRewardsResolver({0: get_interval(0, rpl=5, eth=1)}, claimed=[0])
        ledger = RewardsLedger()
        aggregator = get_aggregator(
            get_network_state(node_address), resolver, ledger=ledger
        )

        with caplog.at_level(logging.ERROR, logger="exporter.node.aggregator"):
            metrics = await self._collect(
                aggregator, head_side_effect=BeaconClientError("beacon node is down")
            )

        assert metrics is None
        records = [r for r in caplog.records if r.name == "exporter.node.aggregator"]
        assert len(records) == 1
        assert "beacon node is down" in records[0].getMessage()
        assert ledger.handled_intervals == {0}
        assert ledger.cumulative_rpl_rewards == pytest.approx(5)
        assert ledger.cumulative_claimed_eth_rewards == pytest.approx(1)

        # the next successful cycle emits the advanced totals without recounting
        metrics = await self._collect(aggregator)
        assert metrics.cumulative_rpl_rewards == pytest.approx(5)
        assert metrics.claimed_eth_rewards == pytest.approx(1)
        assert resolver.requested == [0]

    async def test_cycles_run_one_at_a_time(self):
        resolver = BlockingRewardsResolver(
            {0: get_interval(0, rpl=5, eth=1)}, claimed=[0]
        )
        ledger = RecordingLedger(resolver.calls)
        aggregator = get_aggregator(
            get_network_state(node_address), resolver, ledger=ledger
        )

        async def release_first_cycle():
            for _ in range(10):
                await asyncio.sleep(0)
            # the second cycle waits until the first one has finished
            assert resolver.calls == ["claim_status"]
            resolver.release.set()

        with patch(
            "exporter.node.aggregator.get_beacon_head", return_value=beacon_head
        ):
            first, second, _ = await asyncio.gather(
                aggregator.collect(), aggregator.collect(), release_first_cycle()
            )

        assert resolver.calls == ["claim_status", "commit", "claim_status", "commit"]
        assert resolver.requested == [0]
        assert first.cumulative_rpl_rewards == pytest.approx(5)
        assert second.cumulative_rpl_rewards == pytest.approx(5)
        assert second.claimed_eth_rewards == pytest.approx(1)
        assert ledger.handled_intervals == {0}
