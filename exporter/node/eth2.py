import asyncio
import logging
from typing import Dict, List

import aiohttp
import backoff
from aiohttp import ClientSession
from eth_typing import BlockNumber
from web3 import Web3
from web3.types import Wei

from exporter.settings import (
    ETH2_MAX_RETRY_TIME,
    ETH2_REQUEST_TIMEOUT,
    MINIPOOL_BALANCES_BATCH_SIZE,
    NETWORK_CONFIG,
)

from .eth1 import ExecutionClient
from .types import BeaconHead, MinipoolBalanceDetails, MinipoolDetails, NetworkState

logger = logging.getLogger(__name__)


class BeaconClientError(ConnectionError):
    pass


def get_beacon_session() -> ClientSession:
    return ClientSession(
        timeout=aiohttp.ClientTimeout(total=ETH2_REQUEST_TIMEOUT),
    )


def is_client_error_response(e: Exception) -> bool:
    # 4xx responses will not change on retry
    return isinstance(e, aiohttp.ClientResponseError) and e.status < 500


@backoff.on_exception(
    backoff.expo,
    (aiohttp.ClientError, asyncio.TimeoutError),
    max_time=ETH2_MAX_RETRY_TIME,
    giveup=is_client_error_response,
)
async def _get(session: ClientSession, path: str) -> Dict:
    endpoint = f"{NETWORK_CONFIG['ETH2_ENDPOINT']}{path}"
    async with session.get(endpoint) as response:
        response.raise_for_status()
        return (await response.json())["data"]


async def get_finality_checkpoints(
    session: ClientSession, state_id: str = "head"
) -> Dict:
    """Fetches finality checkpoints."""
    return await _get(session, f"/eth/v1/beacon/states/{state_id}/finality_checkpoints")


async def get_head_header(session: ClientSession) -> Dict:
    """Fetches the header of the beacon chain head block."""
    return await _get(session, "/eth/v1/beacon/headers/head")


async def get_beacon_head(session: ClientSession) -> BeaconHead:
    """Fetches the beacon chain head and its finality checkpoints."""
    try:
        header, checkpoints = await asyncio.gather(
            get_head_header(session), get_finality_checkpoints(session)
        )
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        raise BeaconClientError(f"Error getting beacon chain head: {e!r}") from e
    except (KeyError, TypeError, ValueError) as e:
        raise BeaconClientError(
            f"Error getting beacon chain head: malformed response ({e!r})"
        ) from e

    try:
        slot = int(header["header"]["message"]["slot"])
        return BeaconHead(
            epoch=slot // NETWORK_CONFIG["SLOTS_PER_EPOCH"],
            slot=slot,
            finalized_epoch=int(checkpoints["finalized"]["epoch"]),
            justified_epoch=int(checkpoints["current_justified"]["epoch"]),
            previous_justified_epoch=int(
                checkpoints["previous_justified"]["epoch"]
            ),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise BeaconClientError(
            f"Error getting beacon chain head: malformed response ({e!r})"
        ) from e


async def get_minipool_balance_details(
    execution_client: ExecutionClient,
    minipool: MinipoolDetails,
    state: NetworkState,
    beacon_head: BeaconHead,
    block_number: BlockNumber,
) -> MinipoolBalanceDetails:
    validator = state.validator_details.get(minipool.pubkey)

    # use deposit balances until the validator is active
    if (
        validator is None
        or not validator.exists
        or validator.activation_epoch >= beacon_head.epoch
    ):
        return MinipoolBalanceDetails(
            node_deposit=minipool.node_deposit_balance,
            node_balance=minipool.node_deposit_balance,
            total_balance=Wei(
                minipool.node_deposit_balance + minipool.user_deposit_balance
            ),
        )

    validator_balance = Web3.to_wei(validator.balance, "gwei")
    node_balance = await execution_client.calculate_node_share(
        minipool.address, validator_balance, block_number
    )
    return MinipoolBalanceDetails(
        node_deposit=minipool.node_deposit_balance,
        node_balance=node_balance,
        total_balance=validator_balance,
    )


async def get_beacon_balances(
    execution_client: ExecutionClient,
    minipools: List[MinipoolDetails],
    state: NetworkState,
    beacon_head: BeaconHead,
    block_number: BlockNumber,
) -> List[MinipoolBalanceDetails]:
    """Resolves deposit, node share and total balance of every minipool."""
    details: List[MinipoolBalanceDetails] = []
    chunk_size = MINIPOOL_BALANCES_BATCH_SIZE
    # resolve balances in chunks
    for i in range(0, len(minipools), chunk_size):
        details.extend(
            await asyncio.gather(
                *[
                    get_minipool_balance_details(
                        execution_client=execution_client,
                        minipool=minipool,
                        state=state,
                        beacon_head=beacon_head,
                        block_number=block_number,
                    )
                    for minipool in minipools[i : i + chunk_size]
                ]
            )
        )
    return details
