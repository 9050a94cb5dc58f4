from eth_typing import ChecksumAddress
from web3 import Web3
from web3.contract import Contract

from exporter.settings import NETWORK_CONFIG


def get_rocket_storage_contract(w3_client: Web3) -> Contract:
    """:returns instance of `RocketStorage` contract."""
    return w3_client.eth.contract(
        address=NETWORK_CONFIG["ROCKET_STORAGE_CONTRACT_ADDRESS"],
        abi=[
            {
                "inputs": [{"internalType": "bytes32", "name": "_key", "type": "bytes32"}],
                "name": "getAddress",
                "outputs": [{"internalType": "address", "name": "r", "type": "address"}],
                "stateMutability": "view",
                "type": "function",
            },
            {
                "inputs": [{"internalType": "bytes32", "name": "_key", "type": "bytes32"}],
                "name": "getUint",
                "outputs": [{"internalType": "uint256", "name": "r", "type": "uint256"}],
                "stateMutability": "view",
                "type": "function",
            },
        ],
    )


def get_rocket_contract_address(
    rocket_storage: Contract, contract_name: str
) -> ChecksumAddress:
    """Resolves the address of the network contract registered in `RocketStorage`."""
    key = Web3.solidity_keccak(["string", "string"], ["contract.address", contract_name])
    return Web3.to_checksum_address(rocket_storage.functions.getAddress(key).call())


def get_rewards_pool_contract(w3_client: Web3, address: ChecksumAddress) -> Contract:
    """:returns instance of `RocketRewardsPool` contract."""
    return w3_client.eth.contract(
        address=address,
        abi=[
            {
                "inputs": [],
                "name": "getRewardIndex",
                "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
                "stateMutability": "view",
                "type": "function",
            },
        ],
    )


def get_minipool_contract(w3_client: Web3, address: ChecksumAddress) -> Contract:
    """:returns instance of `RocketMinipool` contract."""
    return w3_client.eth.contract(
        address=address,
        abi=[
            {
                "inputs": [
                    {"internalType": "uint256", "name": "_balance", "type": "uint256"}
                ],
                "name": "calculateNodeShare",
                "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
                "stateMutability": "view",
                "type": "function",
            },
        ],
    )
