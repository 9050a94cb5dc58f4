import asyncio
import logging
import math
from typing import List, Tuple

from aiohttp import ClientSession
from eth_typing import ChecksumAddress
from web3 import Web3

from exporter.settings import MINIPOOL_BOND_SIZE
from exporter.utils import wei_to_ether

from .eth1 import ExecutionClient
from .eth2 import get_beacon_balances, get_beacon_head
from .ledger import RewardsLedger
from .rewards import RewardsResolutionError, RewardsResolver
from .state import StateLocker
from .types import BeaconHead, IntervalInfo, MinipoolDetails, NodeMetrics

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 60 * 60 * 24
SECONDS_PER_HOUR = 60 * 60
HOURS_PER_YEAR = 24 * 365


def get_rpl_issuance(
    inflation_per_day: float, interval_days: float, total_rpl_supply: float
) -> float:
    """RPL minted at the next rewards checkpoint, never negative."""
    issuance = (math.pow(inflation_per_day, interval_days) - 1) * total_rpl_supply
    return max(issuance, 0.0)


def estimate_node_rewards(
    effective_staked_rpl: float,
    total_effective_stake: float,
    rpl_issuance: float,
    node_operator_rewards_percent: float,
) -> float:
    if total_effective_stake <= 0:
        return 0.0
    return (
        effective_staked_rpl
        / total_effective_stake
        * rpl_issuance
        * node_operator_rewards_percent
    )


def calculate_rpl_apr(
    estimated_rewards: float, staked_rpl: float, interval_hours: float
) -> float:
    """Annualized return of the staked RPL in percent."""
    if staked_rpl <= 0 or interval_hours <= 0:
        return 0.0
    return estimated_rewards / staked_rpl / interval_hours * HOURS_PER_YEAR * 100


def calculate_collateral_ratio(
    rpl_price: float, staked_rpl: float, active_minipool_count: float
) -> float:
    if active_minipool_count <= 0:
        return 0.0
    return rpl_price * staked_rpl / (active_minipool_count * MINIPOOL_BOND_SIZE)


class NodeMetricsAggregator(object):
    """Computes the metrics of a single node from the latest network state.

    Cycles are serialized, so the rewards ledger is only ever updated by one
    cycle at a time.
    """

    def __init__(
        self,
        node_address: ChecksumAddress,
        state_locker: StateLocker,
        execution_client: ExecutionClient,
        rewards_resolver: RewardsResolver,
        beacon_session: ClientSession,
        ledger: RewardsLedger | None = None,
    ) -> None:
        self.node_address = Web3.to_checksum_address(node_address)
        self.state_locker = state_locker
        self.execution_client = execution_client
        self.rewards_resolver = rewards_resolver
        self.beacon_session = beacon_session
        self.ledger = ledger if ledger is not None else RewardsLedger()
        self._lock = asyncio.Lock()

    async def collect(self) -> NodeMetrics | None:
        """Runs a single collection cycle. Returns `None` if nothing should be emitted."""
        async with self._lock:
            return await self._collect()

    async def _collect(self) -> NodeMetrics | None:
        state = self.state_locker.get_state()
        if state is None:
            logger.debug("Network state is not available yet, skipping node metrics")
            return None

        total_effective_stake = self.state_locker.get_total_effective_rpl_stake()
        if total_effective_stake is None:
            logger.debug("Total effective RPL stake is not available yet")
            return None

        node_details = state.node_details_by_address.get(self.node_address)
        if node_details is None:
            logger.debug(f"Node {self.node_address} is not in the network state")
            return None
        minipools = state.minipool_details_by_node.get(self.node_address, [])

        results = await asyncio.gather(
            self.reconcile_rewards(),
            self.fetch_beacon_head(),
            self.count_active_minipools(minipools),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                logger.error(f"Error collecting node metrics: {result}")
                return None
        (unclaimed_rpl_rewards, unclaimed_eth_rewards), beacon_head, active_count = (
            results
        )

        network = state.network_details
        staked_rpl = wei_to_ether(node_details.rpl_stake)
        effective_staked_rpl = wei_to_ether(node_details.effective_rpl_stake)

        # estimated rewards at the next checkpoint
        interval_seconds = network.interval_duration.total_seconds()
        rpl_issuance = get_rpl_issuance(
            inflation_per_day=wei_to_ether(network.rpl_inflation_interval_rate),
            interval_days=interval_seconds / SECONDS_PER_DAY,
            total_rpl_supply=wei_to_ether(network.rpl_total_supply),
        )
        estimated_rewards = estimate_node_rewards(
            effective_staked_rpl=effective_staked_rpl,
            total_effective_stake=wei_to_ether(total_effective_stake),
            rpl_issuance=rpl_issuance,
            node_operator_rewards_percent=wei_to_ether(
                network.node_operator_rewards_percent
            ),
        )
        rpl_apr = calculate_rpl_apr(
            estimated_rewards=estimated_rewards,
            staked_rpl=staked_rpl,
            interval_hours=interval_seconds / SECONDS_PER_HOUR,
        )
        collateral_ratio = calculate_collateral_ratio(
            rpl_price=wei_to_ether(network.rpl_price),
            staked_rpl=staked_rpl,
            active_minipool_count=active_count,
        )

        # balances already known from the state
        total_node_share_of_balance = 0.0
        total_refund_balance = 0.0
        total_distributable_balance = 0.0
        for minipool in minipools:
            total_node_share_of_balance += wei_to_ether(minipool.node_share_of_balance)
            total_refund_balance += wei_to_ether(minipool.node_refund_balance)
            total_distributable_balance += wei_to_ether(minipool.distributable_balance)

        try:
            balances = await get_beacon_balances(
                execution_client=self.execution_client,
                minipools=minipools,
                state=state,
                beacon_head=beacon_head,
                block_number=state.el_block_number,
            )
        except Exception as e:
            logger.error(f"Error getting minipool beacon balances: {e}")
            return None

        total_deposit_balance = 0.0
        total_node_share = 0.0
        total_beacon_balance = 0.0
        for balance in balances:
            total_deposit_balance += wei_to_ether(balance.node_deposit)
            total_node_share += wei_to_ether(balance.node_balance)
            total_beacon_balance += wei_to_ether(balance.total_balance)

        return NodeMetrics(
            total_staked_rpl=staked_rpl,
            effective_staked_rpl=effective_staked_rpl,
            rpl_collateral=collateral_ratio,
            cumulative_rpl_rewards=self.ledger.cumulative_rpl_rewards,
            expected_rpl_rewards=estimated_rewards,
            rpl_apr=rpl_apr,
            eth_balance=wei_to_ether(node_details.balance_eth),
            old_rpl_balance=wei_to_ether(node_details.balance_old_rpl),
            new_rpl_balance=wei_to_ether(node_details.balance_rpl),
            reth_balance=wei_to_ether(node_details.balance_reth),
            active_minipool_count=float(active_count),
            deposited_eth=total_deposit_balance,
            beacon_share=total_node_share,
            beacon_balance=total_beacon_balance,
            unclaimed_rpl_rewards=unclaimed_rpl_rewards,
            claimed_eth_rewards=self.ledger.cumulative_claimed_eth_rewards,
            unclaimed_eth_rewards=unclaimed_eth_rewards,
            total_eth_rewards_skimmed=total_distributable_balance,
            total_eth_rewards_share_skimmed=total_node_share_of_balance,
            total_refund_eth_skimmed=total_refund_balance,
        )

    async def reconcile_rewards(self) -> Tuple[float, float]:
        """Folds newly claimed intervals into the ledger.

        Returns the unclaimed RPL and ETH rewards of the node. The ledger is
        only updated once every interval has been resolved.
        """
        status = await self.rewards_resolver.get_claim_status(self.node_address)

        new_claimed: List[IntervalInfo] = []
        for interval in status.claimed:
            if self.ledger.is_handled(interval):
                continue
            info = await self.rewards_resolver.get_interval_info(
                self.node_address, interval
            )
            if not info.tree_file_exists:
                raise RewardsResolutionError(
                    f"Error calculating lifetime node rewards: rewards file"
                    f" {info.tree_file_path} doesn't exist but interval {interval} was claimed"
                )
            new_claimed.append(info)

        unclaimed_rpl = 0
        unclaimed_eth = 0
        for interval in status.unclaimed:
            info = await self.rewards_resolver.get_interval_info(
                self.node_address, interval
            )
            if not info.tree_file_exists:
                raise RewardsResolutionError(
                    f"Error calculating lifetime node rewards: rewards file"
                    f" {info.tree_file_path} doesn't exist and interval {interval} is unclaimed"
                )
            if info.node_exists:
                unclaimed_rpl += info.collateral_rpl_amount
                unclaimed_eth += info.smoothing_pool_eth_amount

        block_number = await self.execution_client.get_latest_block_number()
        self.ledger.commit(new_claimed, block_number)

        return wei_to_ether(unclaimed_rpl), wei_to_ether(unclaimed_eth)

    async def fetch_beacon_head(self) -> BeaconHead:
        return await get_beacon_head(self.beacon_session)

    async def count_active_minipools(self, minipools: List[MinipoolDetails]) -> int:
        return sum(1 for minipool in minipools if not minipool.finalised)
