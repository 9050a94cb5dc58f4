import asyncio
import json
import logging
import os
from typing import List

from eth_typing import ChecksumAddress
from web3.types import Wei

from exporter.settings import NETWORK_CONFIG, REWARDS_TREES_DIR

from .eth1 import ExecutionClient
from .types import ClaimStatus, IntervalInfo, RewardsTreeFile

logger = logging.getLogger(__name__)

INTERVALS_PER_BITMAP = 256


class RewardsResolutionError(Exception):
    pass


def get_rewards_tree_path(
    interval: int, trees_dir: str = REWARDS_TREES_DIR
) -> str:
    network = NETWORK_CONFIG["REWARDS_TREE_NETWORK_NAME"]
    return os.path.join(trees_dir, f"rp-rewards-{network}-{interval}.json")


def decode_claimed_bitmap(
    bitmap: int, bucket: int, current_index: int
) -> ClaimStatus:
    """Splits the intervals covered by a single bitmap into unclaimed and claimed."""
    unclaimed: List[int] = []
    claimed: List[int] = []
    for bit in range(INTERVALS_PER_BITMAP):
        interval = bucket * INTERVALS_PER_BITMAP + bit
        if interval >= current_index:
            break
        if (bitmap >> bit) & 1:
            claimed.append(interval)
        else:
            unclaimed.append(interval)
    return ClaimStatus(unclaimed=unclaimed, claimed=claimed)


def parse_rewards_tree(
    node_address: ChecksumAddress,
    interval: int,
    tree_file_path: str,
    tree: RewardsTreeFile,
) -> IntervalInfo:
    """Extracts the node rewards for a single interval from the rewards tree."""
    node_rewards = {
        address.lower(): rewards
        for address, rewards in tree.get("nodeRewards", {}).items()
    }
    rewards = node_rewards.get(node_address.lower())
    if rewards is None:
        return IntervalInfo(
            index=interval,
            tree_file_path=tree_file_path,
            tree_file_exists=True,
            node_exists=False,
            merkle_root=tree.get("merkleRoot"),
        )

    return IntervalInfo(
        index=interval,
        tree_file_path=tree_file_path,
        tree_file_exists=True,
        node_exists=True,
        collateral_rpl_amount=Wei(int(rewards.get("collateralRpl", 0))),
        oracle_dao_rpl_amount=Wei(int(rewards.get("oracleDaoRpl", 0))),
        smoothing_pool_eth_amount=Wei(int(rewards.get("smoothingPoolEth", 0))),
        merkle_root=tree.get("merkleRoot"),
        merkle_proof=tuple(rewards.get("merkleProof", ())),
    )


def read_rewards_tree(tree_file_path: str) -> RewardsTreeFile:
    with open(tree_file_path) as f:
        return json.load(f)


def load_interval_info(
    node_address: ChecksumAddress, interval: int, tree_file_path: str
) -> IntervalInfo:
    """Reads the rewards tree of the interval. Blocks on file I/O and JSON parsing."""
    try:
        tree = read_rewards_tree(tree_file_path)
    except FileNotFoundError:
        return IntervalInfo(
            index=interval, tree_file_path=tree_file_path, tree_file_exists=False
        )
    except (OSError, ValueError) as e:
        raise RewardsResolutionError(
            f"Error reading rewards file {tree_file_path} for interval {interval}: {e}"
        ) from e

    try:
        return parse_rewards_tree(node_address, interval, tree_file_path, tree)
    except (AttributeError, TypeError, ValueError) as e:
        raise RewardsResolutionError(
            f"Error parsing rewards file {tree_file_path} for interval {interval}: {e}"
        ) from e


class RewardsResolver(object):
    """Resolves claimed reward intervals and their rewards for a node."""

    def __init__(
        self,
        execution_client: ExecutionClient,
        trees_dir: str = REWARDS_TREES_DIR,
    ) -> None:
        self.execution_client = execution_client
        self.trees_dir = trees_dir

    async def get_claim_status(self, node_address: ChecksumAddress) -> ClaimStatus:
        current_index = await self.execution_client.get_reward_index()
        unclaimed: List[int] = []
        claimed: List[int] = []
        if current_index == 0:
            return ClaimStatus(unclaimed=unclaimed, claimed=claimed)

        for bucket in range(current_index // INTERVALS_PER_BITMAP + 1):
            bitmap = await self.execution_client.get_claimed_bitmap(
                node_address, bucket
            )
            status = decode_claimed_bitmap(bitmap, bucket, current_index)
            unclaimed.extend(status.unclaimed)
            claimed.extend(status.claimed)

        return ClaimStatus(unclaimed=unclaimed, claimed=claimed)

    async def get_interval_info(
        self, node_address: ChecksumAddress, interval: int
    ) -> IntervalInfo:
        tree_file_path = get_rewards_tree_path(interval, self.trees_dir)
        # rewards trees are large, parse them outside of the event loop
        return await asyncio.to_thread(
            load_interval_info, node_address, interval, tree_file_path
        )
