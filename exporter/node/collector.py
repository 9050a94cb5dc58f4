from typing import Iterable, List, NamedTuple, Tuple

from prometheus_client.core import GaugeMetricFamily
from prometheus_client.registry import Collector

from .types import NodeMetrics

NAMESPACE = "rocketpool"
SUBSYSTEM = "node"

TOKEN_LABEL = "Token"
TOKEN_BALANCES: List[Tuple[str, str]] = [
    ("ETH", "eth_balance"),
    ("Legacy RPL", "old_rpl_balance"),
    ("New RPL", "new_rpl_balance"),
    ("rETH", "reth_balance"),
]


class GaugeDescription(NamedTuple):
    name: str
    documentation: str
    field: str


GAUGES: List[GaugeDescription] = [
    GaugeDescription(
        "total_staked_rpl",
        "The total amount of RPL staked on the node",
        "total_staked_rpl",
    ),
    GaugeDescription(
        "effective_staked_rpl",
        "The effective amount of RPL staked on the node (honoring the 150% collateral cap)",
        "effective_staked_rpl",
    ),
    GaugeDescription(
        "rpl_collateral",
        "The RPL collateral level for the node",
        "rpl_collateral",
    ),
    GaugeDescription(
        "cumulative_rpl_rewards",
        "The cumulative RPL rewards earned by the node",
        "cumulative_rpl_rewards",
    ),
    GaugeDescription(
        "expected_rpl_rewards",
        "The expected RPL rewards for the node at the next rewards checkpoint",
        "expected_rpl_rewards",
    ),
    GaugeDescription(
        "rpl_apr",
        "The estimated APR of RPL for the node from the next rewards checkpoint",
        "rpl_apr",
    ),
    GaugeDescription(
        "active_minipool_count",
        "The number of active minipools owned by the node",
        "active_minipool_count",
    ),
    GaugeDescription(
        "deposited_eth",
        "The amount of ETH this node deposited into minipools",
        "deposited_eth",
    ),
    GaugeDescription(
        "beacon_share",
        "The node's total share of its minipool's beacon chain balances",
        "beacon_share",
    ),
    GaugeDescription(
        "beacon_balance",
        "The total balances of all this node's validators on the beacon chain",
        "beacon_balance",
    ),
    GaugeDescription(
        "unclaimed_rewards",
        "The RPL rewards from the last period that have not been claimed yet",
        "unclaimed_rpl_rewards",
    ),
    GaugeDescription(
        "claimed_eth_rewards",
        "The claimed ETH rewards from the smoothing pool",
        "claimed_eth_rewards",
    ),
    GaugeDescription(
        "unclaimed_eth_rewards",
        "The unclaimed ETH rewards from the smoothing pool",
        "unclaimed_eth_rewards",
    ),
    GaugeDescription(
        "total_eth_rewards_skimmed",
        "The total ETH rewards skimmed balance",
        "total_eth_rewards_skimmed",
    ),
    GaugeDescription(
        "total_eth_rewards_share_skimmed",
        "The total ETH rewards share of the skimmed balance",
        "total_eth_rewards_share_skimmed",
    ),
    GaugeDescription(
        "total_refund_eth_skimmed",
        "The total refund ETH skimmed balance",
        "total_refund_eth_skimmed",
    ),
]


def get_metric_name(name: str) -> str:
    return f"{NAMESPACE}_{SUBSYSTEM}_{name}"


class NodeCollector(Collector):
    """Exposes the metrics of the latest node collection cycle."""

    def __init__(self) -> None:
        self.metrics: NodeMetrics | None = None

    def update(self, metrics: NodeMetrics | None) -> None:
        self.metrics = metrics

    def describe(self) -> Iterable[GaugeMetricFamily]:
        for gauge in GAUGES:
            yield GaugeMetricFamily(get_metric_name(gauge.name), gauge.documentation)
        yield GaugeMetricFamily(
            get_metric_name("balance"),
            "How much ETH is in this node wallet",
            labels=[TOKEN_LABEL],
        )

    def collect(self) -> Iterable[GaugeMetricFamily]:
        metrics = self.metrics
        if metrics is None:
            return

        for gauge in GAUGES:
            yield GaugeMetricFamily(
                get_metric_name(gauge.name),
                gauge.documentation,
                value=getattr(metrics, gauge.field),
            )

        balances = GaugeMetricFamily(
            get_metric_name("balance"),
            "How much ETH is in this node wallet",
            labels=[TOKEN_LABEL],
        )
        for token, field in TOKEN_BALANCES:
            balances.add_metric([token], getattr(metrics, field))
        yield balances
