import asyncio
import logging

from web3 import Web3

from exporter.metrics_server import create_metrics_app, start_metrics_server
from exporter.node.aggregator import NodeMetricsAggregator
from exporter.node.eth1 import ExecutionClient, get_web3_client
from exporter.node.eth2 import get_beacon_head, get_beacon_session
from exporter.node.rewards import RewardsResolver
from exporter.node.state import StateLocker, refresh_state
from exporter.settings import (
    LOG_LEVEL,
    METRICS_SERVER_HOST,
    METRICS_SERVER_PORT,
    NETWORK,
    NODE_ADDRESS,
    REWARDS_TREES_DIR,
    SENTRY_DSN,
    STATE_REFRESH_INTERVAL,
    STATE_SNAPSHOT_PATH,
)
from exporter.utils import InterruptHandler

logging.basicConfig(
    format="%(asctime)s %(levelname)-8s %(message)s",
    datefmt="%m-%d %H:%M",
    level=LOG_LEVEL,
)
logging.getLogger("backoff").addHandler(logging.StreamHandler())

logger = logging.getLogger(__name__)


async def main() -> None:
    if not NODE_ADDRESS:
        raise RuntimeError("NODE_ADDRESS must be configured")
    node_address = Web3.to_checksum_address(NODE_ADDRESS)

    # aiohttp session
    session = get_beacon_session()
    execution_client = ExecutionClient(get_web3_client())
    await init_checks(execution_client, session)

    # wait for interrupt
    interrupt_handler = InterruptHandler()

    state_locker = StateLocker()
    aggregator = NodeMetricsAggregator(
        node_address=node_address,
        state_locker=state_locker,
        execution_client=execution_client,
        rewards_resolver=RewardsResolver(execution_client, REWARDS_TREES_DIR),
        beacon_session=session,
    )
    runner = await start_metrics_server(
        create_metrics_app(aggregator), METRICS_SERVER_HOST, METRICS_SERVER_PORT
    )
    logger.info(f"Collecting {NETWORK} metrics for node {node_address}")

    await refresh_network_state(interrupt_handler, state_locker)

    await runner.cleanup()
    await session.close()


async def init_checks(execution_client: ExecutionClient, session) -> None:
    # check ETH1 connection
    logger.info("Checking connection to ETH1 node...")
    block_number = await execution_client.get_latest_block_number()
    logger.info(f"Connected to ETH1 node. Current block number: {block_number}")

    # check ETH2 connection
    logger.info("Checking connection to ETH2 node...")
    beacon_head = await get_beacon_head(session)
    logger.info(f"Connected to ETH2 node. Current epoch: {beacon_head.epoch}")


async def refresh_network_state(
    interrupt_handler: InterruptHandler, state_locker: StateLocker
) -> None:
    while not interrupt_handler.exit:
        try:
            await asyncio.to_thread(refresh_state, state_locker, STATE_SNAPSHOT_PATH)
        except Exception as e:
            logger.exception(e)
        finally:
            await asyncio.sleep(STATE_REFRESH_INTERVAL)


if __name__ == "__main__":
    if SENTRY_DSN:
        import sentry_sdk
        from sentry_sdk.integrations.logging import ignore_logger

        sentry_sdk.init(SENTRY_DSN, traces_sample_rate=0.1)
        sentry_sdk.set_tag("network", NETWORK)
        sentry_sdk.set_tag("node", NODE_ADDRESS)
        ignore_logger("backoff")

    asyncio.run(main())
