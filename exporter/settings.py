from decouple import Choices, config

from exporter.networks import HOLESKY, MAINNET, NETWORKS

# common
LOG_LEVEL = config("LOG_LEVEL", default="INFO")

NETWORK = config(
    "NETWORK",
    default=MAINNET,
    cast=Choices([MAINNET, HOLESKY], cast=lambda net: net.lower()),
)

NETWORK_CONFIG = NETWORKS[NETWORK]

# node the metrics are collected for
NODE_ADDRESS = config("NODE_ADDRESS", default="")

# metrics server settings
METRICS_SERVER_PORT = config("METRICS_SERVER_PORT", default=9102, cast=int)
METRICS_SERVER_HOST = config("METRICS_SERVER_HOST", default="127.0.0.1", cast=str)

# directory with the downloaded rewards tree files
REWARDS_TREES_DIR = config("REWARDS_TREES_DIR", default="./rewards-trees")

# network state snapshot written by the node's state manager
STATE_SNAPSHOT_PATH = config("STATE_SNAPSHOT_PATH", default="./network-state.json")
STATE_REFRESH_INTERVAL = config("STATE_REFRESH_INTERVAL", default=60, cast=int)

# network clients
ETH1_REQUEST_TIMEOUT = config("ETH1_REQUEST_TIMEOUT", default=30, cast=int)
ETH2_REQUEST_TIMEOUT = config("ETH2_REQUEST_TIMEOUT", default=10, cast=int)
ETH2_MAX_RETRY_TIME = config("ETH2_MAX_RETRY_TIME", default=20, cast=int)

# how many minipool balances to resolve concurrently
MINIPOOL_BALANCES_BATCH_SIZE = config(
    "MINIPOOL_BALANCES_BATCH_SIZE", default=20, cast=int
)

# collateral is measured against the ETH bond of every active minipool
MINIPOOL_BOND_SIZE = 16.0

# sentry config
SENTRY_DSN = config("SENTRY_DSN", default="")
