import logging
from typing import Iterable, Set

from eth_typing import BlockNumber

from exporter.utils import wei_to_ether

from .types import IntervalInfo

logger = logging.getLogger(__name__)


class RewardsLedger:
    """Running totals of the rewards the node has claimed so far.

    Every claimed interval is folded in at most once, so the totals never
    decrease and never count an interval twice.
    """

    def __init__(self) -> None:
        self.cumulative_rpl_rewards: float = 0.0
        self.cumulative_claimed_eth_rewards: float = 0.0
        self.handled_intervals: Set[int] = set()
        self.next_rewards_start_block: BlockNumber | None = None

    def is_handled(self, interval: int) -> bool:
        return interval in self.handled_intervals

    def commit(
        self, intervals: Iterable[IntervalInfo], block_number: BlockNumber
    ) -> None:
        new_rpl_rewards = 0
        new_eth_rewards = 0
        new_intervals = set()
        for info in intervals:
            if info.index in self.handled_intervals or info.index in new_intervals:
                continue
            new_rpl_rewards += info.collateral_rpl_amount
            new_eth_rewards += info.smoothing_pool_eth_amount
            new_intervals.add(info.index)

        self.cumulative_rpl_rewards += wei_to_ether(new_rpl_rewards)
        self.cumulative_claimed_eth_rewards += wei_to_ether(new_eth_rewards)
        self.handled_intervals.update(new_intervals)
        self.next_rewards_start_block = BlockNumber(block_number + 1)

        if new_intervals:
            logger.info(
                f"Folded claimed intervals {sorted(new_intervals)} into cumulative rewards:"
                f" rpl={self.cumulative_rpl_rewards},"
                f" eth={self.cumulative_claimed_eth_rewards}"
            )
