import asyncio
import logging

from eth_typing import BlockNumber, ChecksumAddress
from web3 import Web3
from web3.middleware import ExtraDataToPOAMiddleware
from web3.types import Wei

from exporter.settings import ETH1_REQUEST_TIMEOUT, NETWORK_CONFIG

from .contracts import (
    get_minipool_contract,
    get_rewards_pool_contract,
    get_rocket_contract_address,
    get_rocket_storage_contract,
)

logger = logging.getLogger(__name__)

REWARDS_POOL_CONTRACT_NAME = "rocketRewardsPool"


def get_web3_client() -> Web3:
    """Returns instance of the Web3 client."""
    endpoint = NETWORK_CONFIG["ETH1_ENDPOINT"]

    if endpoint.startswith("http"):
        w3 = Web3(
            Web3.HTTPProvider(
                endpoint, request_kwargs={"timeout": ETH1_REQUEST_TIMEOUT}
            )
        )
        logger.warning(f"Web3 HTTP endpoint={endpoint}")
    else:
        w3 = Web3(Web3.IPCProvider(endpoint, timeout=ETH1_REQUEST_TIMEOUT))
        logger.warning(f"Web3 IPC endpoint={endpoint}")

    if NETWORK_CONFIG["IS_POA"]:
        w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        logger.warning("Injected POA middleware")

    return w3


def get_claimed_bitmap_key(node_address: ChecksumAddress, bucket: int) -> bytes:
    """Storage key of the bitmap holding claim flags for 256 reward intervals."""
    return Web3.solidity_keccak(
        ["string", "address", "uint256"],
        ["rewards.interval.claimed", node_address, bucket],
    )


class ExecutionClient(object):
    """Reads the execution layer state required by the node metrics.

    Web3 calls are blocking, so every call is moved to a worker thread.
    """

    def __init__(self, w3_client: Web3) -> None:
        self.w3_client = w3_client
        self.rocket_storage = get_rocket_storage_contract(w3_client)
        self._rewards_pool = None

    @property
    def rewards_pool(self):
        if self._rewards_pool is None:
            address = get_rocket_contract_address(
                self.rocket_storage, REWARDS_POOL_CONTRACT_NAME
            )
            self._rewards_pool = get_rewards_pool_contract(self.w3_client, address)
        return self._rewards_pool

    async def get_latest_block_number(self) -> BlockNumber:
        block = await asyncio.to_thread(self.w3_client.eth.get_block, "latest")
        return BlockNumber(block["number"])

    async def get_reward_index(self) -> int:
        return await asyncio.to_thread(
            lambda: self.rewards_pool.functions.getRewardIndex().call()
        )

    async def get_claimed_bitmap(self, node_address: ChecksumAddress, bucket: int) -> int:
        key = get_claimed_bitmap_key(node_address, bucket)
        return await asyncio.to_thread(
            self.rocket_storage.functions.getUint(key).call
        )

    async def calculate_node_share(
        self,
        minipool_address: ChecksumAddress,
        balance: Wei,
        block_number: BlockNumber,
    ) -> Wei:
        contract = get_minipool_contract(self.w3_client, minipool_address)
        node_share = await asyncio.to_thread(
            contract.functions.calculateNodeShare(balance).call,
            block_identifier=block_number,
        )
        return Wei(node_share)
