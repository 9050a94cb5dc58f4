import json
import logging
import threading
from datetime import timedelta
from typing import Dict, Tuple

from web3 import Web3
from web3.types import Wei

from .types import (
    MinipoolDetails,
    NetworkDetails,
    NetworkState,
    NodeDetails,
    ValidatorDetails,
)

logger = logging.getLogger(__name__)


class StateLocker:
    """Thread-safe holder of the latest network state snapshot."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state: NetworkState | None = None
        self._total_effective_rpl_stake: Wei | None = None

    def update_state(
        self, state: NetworkState, total_effective_rpl_stake: Wei | None
    ) -> None:
        with self._lock:
            self._state = state
            self._total_effective_rpl_stake = total_effective_rpl_stake

    def get_state(self) -> NetworkState | None:
        with self._lock:
            return self._state

    def get_total_effective_rpl_stake(self) -> Wei | None:
        with self._lock:
            return self._total_effective_rpl_stake


def _wei(value) -> Wei:
    return Wei(int(value))


def _parse_node_details(data: Dict) -> NodeDetails:
    return NodeDetails(
        rpl_stake=_wei(data["rpl_stake"]),
        effective_rpl_stake=_wei(data["effective_rpl_stake"]),
        balance_eth=_wei(data.get("balance_eth", 0)),
        balance_old_rpl=_wei(data.get("balance_old_rpl", 0)),
        balance_rpl=_wei(data.get("balance_rpl", 0)),
        balance_reth=_wei(data.get("balance_reth", 0)),
        deposited_eth=_wei(data.get("deposited_eth", 0)),
    )


def _parse_minipool_details(data: Dict) -> MinipoolDetails:
    return MinipoolDetails(
        address=Web3.to_checksum_address(data["address"]),
        pubkey=data["pubkey"].lower(),
        finalised=bool(data.get("finalised", False)),
        node_deposit_balance=_wei(data.get("node_deposit_balance", 0)),
        user_deposit_balance=_wei(data.get("user_deposit_balance", 0)),
        node_share_of_balance=_wei(data.get("node_share_of_balance", 0)),
        node_refund_balance=_wei(data.get("node_refund_balance", 0)),
        distributable_balance=_wei(data.get("distributable_balance", 0)),
    )


def parse_network_state(data: Dict) -> Tuple[NetworkState, Wei | None]:
    """Builds network state and the total effective RPL stake from the snapshot dict."""
    network = data["network_details"]
    network_details = NetworkDetails(
        rpl_inflation_interval_rate=_wei(network["rpl_inflation_interval_rate"]),
        rpl_total_supply=_wei(network["rpl_total_supply"]),
        interval_duration=timedelta(seconds=int(network["interval_duration"])),
        node_operator_rewards_percent=_wei(network["node_operator_rewards_percent"]),
        rpl_price=_wei(network["rpl_price"]),
    )
    node_details = {
        Web3.to_checksum_address(address): _parse_node_details(details)
        for address, details in data.get("node_details", {}).items()
    }
    minipool_details = {
        Web3.to_checksum_address(address): [
            _parse_minipool_details(minipool) for minipool in minipools
        ]
        for address, minipools in data.get("minipool_details", {}).items()
    }
    validator_details = {
        pubkey.lower(): ValidatorDetails(
            exists=bool(details.get("exists", True)),
            balance=int(details.get("balance", 0)),
            activation_epoch=int(details.get("activation_epoch", 0)),
        )
        for pubkey, details in data.get("validator_details", {}).items()
    }
    state = NetworkState(
        el_block_number=int(data["el_block_number"]),
        network_details=network_details,
        node_details_by_address=node_details,
        minipool_details_by_node=minipool_details,
        validator_details=validator_details,
    )

    total_effective_rpl_stake = data.get("total_effective_rpl_stake")
    if total_effective_rpl_stake is not None:
        total_effective_rpl_stake = _wei(total_effective_rpl_stake)

    return state, total_effective_rpl_stake


def refresh_state(state_locker: StateLocker, snapshot_path: str) -> bool:
    """Loads the snapshot file into the state locker. Returns whether it was updated."""
    try:
        with open(snapshot_path) as f:
            data = json.load(f)
    except FileNotFoundError:
        logger.info(f"Network state snapshot {snapshot_path} is not available yet")
        return False

    state, total_effective_rpl_stake = parse_network_state(data)
    state_locker.update_state(state, total_effective_rpl_stake)
    logger.debug(f"Loaded network state at block {state.el_block_number}")
    return True
