from decouple import config
from web3 import Web3

MAINNET = "mainnet"
HOLESKY = "holesky"

NETWORKS = {
    MAINNET: dict(
        ETH1_ENDPOINT=config("ETH1_ENDPOINT", default="http://localhost:8545"),
        ETH2_ENDPOINT=config("ETH2_ENDPOINT", default="http://localhost:5052"),
        SLOTS_PER_EPOCH=32,
        SECONDS_PER_SLOT=12,
        ROCKET_STORAGE_CONTRACT_ADDRESS=Web3.to_checksum_address(
            config(
                "ROCKET_STORAGE_CONTRACT_ADDRESS",
                default="0x1d8f8f00cfa6758d7bE78336684788Fb0ee0Fa46",
            )
        ),
        REWARDS_TREE_NETWORK_NAME="mainnet",
        IS_POA=False,
    ),
    HOLESKY: dict(
        ETH1_ENDPOINT=config("ETH1_ENDPOINT", default="http://localhost:8545"),
        ETH2_ENDPOINT=config("ETH2_ENDPOINT", default="http://localhost:5052"),
        SLOTS_PER_EPOCH=32,
        SECONDS_PER_SLOT=12,
        ROCKET_STORAGE_CONTRACT_ADDRESS=Web3.to_checksum_address(
            config(
                "ROCKET_STORAGE_CONTRACT_ADDRESS",
                default="0x594Fb75D3dc2DFa0150Ad03F99F97817747dd4E1",
            )
        ),
        REWARDS_TREE_NETWORK_NAME="holesky",
        IS_POA=False,
    ),
}
