from datetime import timedelta
from typing import Dict, List, NamedTuple, Tuple, TypedDict

from eth_typing import BlockNumber, ChecksumAddress, HexStr
from web3.types import Wei


class NodeDetails(NamedTuple):
    rpl_stake: Wei
    effective_rpl_stake: Wei
    balance_eth: Wei
    balance_old_rpl: Wei
    balance_rpl: Wei
    balance_reth: Wei
    deposited_eth: Wei


class MinipoolDetails(NamedTuple):
    address: ChecksumAddress
    pubkey: HexStr
    finalised: bool
    node_deposit_balance: Wei
    user_deposit_balance: Wei
    node_share_of_balance: Wei
    node_refund_balance: Wei
    distributable_balance: Wei


class ValidatorDetails(NamedTuple):
    exists: bool
    # gwei
    balance: int
    activation_epoch: int


class NetworkDetails(NamedTuple):
    rpl_inflation_interval_rate: Wei
    rpl_total_supply: Wei
    interval_duration: timedelta
    node_operator_rewards_percent: Wei
    rpl_price: Wei


class NetworkState(NamedTuple):
    el_block_number: BlockNumber
    network_details: NetworkDetails
    node_details_by_address: Dict[ChecksumAddress, NodeDetails]
    minipool_details_by_node: Dict[ChecksumAddress, List[MinipoolDetails]]
    validator_details: Dict[HexStr, ValidatorDetails]


class IntervalInfo(NamedTuple):
    index: int
    tree_file_path: str
    tree_file_exists: bool
    node_exists: bool = False
    collateral_rpl_amount: Wei = Wei(0)
    oracle_dao_rpl_amount: Wei = Wei(0)
    smoothing_pool_eth_amount: Wei = Wei(0)
    merkle_root: HexStr | None = None
    merkle_proof: Tuple[HexStr, ...] = ()


class ClaimStatus(NamedTuple):
    unclaimed: List[int]
    claimed: List[int]


class BeaconHead(NamedTuple):
    epoch: int
    slot: int
    finalized_epoch: int
    justified_epoch: int
    previous_justified_epoch: int


class MinipoolBalanceDetails(NamedTuple):
    node_deposit: Wei
    node_balance: Wei
    total_balance: Wei


class NodeRewardsEntry(TypedDict, total=False):
    rewardNetwork: int
    collateralRpl: str
    oracleDaoRpl: str
    smoothingPoolEth: str
    merkleProof: List[HexStr]


class RewardsTreeFile(TypedDict, total=False):
    rewardsFileVersion: int
    index: int
    network: str
    merkleRoot: HexStr
    nodeRewards: Dict[str, NodeRewardsEntry]


class NodeMetrics(NamedTuple):
    total_staked_rpl: float
    effective_staked_rpl: float
    rpl_collateral: float
    cumulative_rpl_rewards: float
    expected_rpl_rewards: float
    rpl_apr: float
    eth_balance: float
    old_rpl_balance: float
    new_rpl_balance: float
    reth_balance: float
    active_minipool_count: float
    deposited_eth: float
    beacon_share: float
    beacon_balance: float
    unclaimed_rpl_rewards: float
    claimed_eth_rewards: float
    unclaimed_eth_rewards: float
    total_eth_rewards_skimmed: float
    total_eth_rewards_share_skimmed: float
    total_refund_eth_skimmed: float
