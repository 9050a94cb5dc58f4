import asyncio
import logging

from aiohttp import web
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest

from exporter.node.aggregator import NodeMetricsAggregator
from exporter.node.collector import NodeCollector

logger = logging.getLogger(__name__)
metrics_routes = web.RouteTableDef()

AGGREGATOR_KEY = web.AppKey("aggregator", NodeMetricsAggregator)
COLLECTOR_KEY = web.AppKey("node_collector", NodeCollector)
REGISTRY_KEY = web.AppKey("registry", CollectorRegistry)
SCRAPE_LOCK_KEY = web.AppKey("scrape_lock", asyncio.Lock)


@metrics_routes.get("/")
async def health(request):
    aggregator = request.app[AGGREGATOR_KEY]
    if aggregator.state_locker.get_state() is not None:
        return web.Response(text="exporter 1")

    return web.Response(text="exporter 0")


@metrics_routes.get("/metrics")
async def metrics(request):
    app = request.app
    async with app[SCRAPE_LOCK_KEY]:
        node_metrics = await app[AGGREGATOR_KEY].collect()
        app[COLLECTOR_KEY].update(node_metrics)
        output = generate_latest(app[REGISTRY_KEY])

    return web.Response(body=output, headers={"Content-Type": CONTENT_TYPE_LATEST})


def create_metrics_app(aggregator: NodeMetricsAggregator) -> web.Application:
    registry = CollectorRegistry()
    node_collector = NodeCollector()
    registry.register(node_collector)

    app = web.Application()
    app[AGGREGATOR_KEY] = aggregator
    app[COLLECTOR_KEY] = node_collector
    app[REGISTRY_KEY] = registry
    app[SCRAPE_LOCK_KEY] = asyncio.Lock()
    app.add_routes(metrics_routes)
    return app


async def start_metrics_server(
    app: web.Application, host: str, port: int
) -> web.AppRunner:
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info(f"Started metrics server at http://{host}:{port}/metrics")
    return runner
