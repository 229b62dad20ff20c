"""HTTP server exposing the exporter's endpoints."""

import logging
import platform
from datetime import datetime, timezone
from typing import Optional

from aiohttp import web, web_request
from aiohttp.web_response import Response
from prometheus_client import REGISTRY, Counter, Gauge, Info

from . import __version__
from .assembler import RegistryAssembler
from .config.settings import WebConfig
from .handler import ScrapeHandler, render_metrics

logger = logging.getLogger(__name__)

BUILD_INFO = Info(
    'stackdriver_exporter_build',
    'A metric with a constant 1 value labeled by the exporter version and Python version.'
)
BUILD_INFO.info({'version': __version__, 'pythonversion': platform.python_version()})

REQUESTS_TOTAL = Counter(
    'promhttp_metric_handler_requests',
    'Total number of scrapes by HTTP status code.',
    ['code']
)
REQUESTS_IN_FLIGHT = Gauge(
    'promhttp_metric_handler_requests_in_flight',
    'Current number of scrapes being served.'
)

LANDING_PAGE = """<html>
<head><title>Stackdriver Exporter</title></head>
<body>
<h1>Stackdriver Exporter</h1>
<p>Prometheus Exporter for Google Stackdriver</p>
<p>Version: {version}</p>
<ul>
{links}
</ul>
</body>
</html>
"""


def instrument_metric_handler(handler):
    """Count scrapes by status code and track those in flight."""

    async def wrapper(request: web_request.Request) -> Response:
        with REQUESTS_IN_FLIGHT.track_inprogress():
            try:
                response = await handler(request)
            except web.HTTPException as e:
                REQUESTS_TOTAL.labels(code=str(e.status)).inc()
                raise
        REQUESTS_TOTAL.labels(code=str(response.status)).inc()
        return response

    return wrapper


async def default_metrics(request: web_request.Request) -> Response:
    """The exporter's own process metrics."""
    return render_metrics(request, REGISTRY)


async def live(request: web_request.Request) -> Response:
    """Liveness probe."""
    return web.json_response(
        {
            "alive": True,
            "timestamp": datetime.now(timezone.utc).isoformat()
        },
        status=200
    )


def create_app(config: WebConfig, assembler: RegistryAssembler) -> web.Application:
    """
    Wire the routes.

    When both telemetry paths are the same, the exporter's own metrics and
    the Stackdriver metrics are served together; otherwise each path serves
    one of them.
    """
    app = web.Application()
    links = [(config.telemetry_path, "Metrics")]

    if config.telemetry_path == config.stackdriver_telemetry_path:
        handler = ScrapeHandler(assembler, additional_registry=REGISTRY)
        app.router.add_get(config.telemetry_path, instrument_metric_handler(handler))
    else:
        logger.info(f"Serving Stackdriver metrics at separate path {config.stackdriver_telemetry_path}")
        handler = ScrapeHandler(assembler)
        app.router.add_get(config.stackdriver_telemetry_path, instrument_metric_handler(handler))
        app.router.add_get(config.telemetry_path, instrument_metric_handler(default_metrics))
        links.append((config.stackdriver_telemetry_path, "Stackdriver Metrics"))

    app.router.add_get('/health', live)

    if "/" not in (config.telemetry_path, config.stackdriver_telemetry_path) and config.telemetry_path:
        page = LANDING_PAGE.format(
            version=__version__,
            links='\n'.join(f'<li><a href="{path}">{text}</a></li>' for path, text in links),
        )

        async def landing(request: web_request.Request) -> Response:
            return web.Response(text=page, content_type='text/html')

        app.router.add_get('/', landing)

    return app


class ExporterServer:
    """HTTP server serving the exporter application."""

    def __init__(self, config: WebConfig, assembler: RegistryAssembler):
        self.config = config
        self.assembler = assembler
        self.app: Optional[web.Application] = None
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None

    async def start(self):
        """Start the HTTP server."""
        host, port = self.config.listen_address, self.config.port
        logger.info(f"Starting HTTP server on {host}:{port}")

        self.app = create_app(self.config, self.assembler)

        # Abandoned scrapes cancel their outstanding API calls
        self.runner = web.AppRunner(self.app, handler_cancellation=True)
        await self.runner.setup()

        self.site = web.TCPSite(self.runner, host, port)
        await self.site.start()

        logger.info(f"Listening on http://{host}:{port}")

    async def stop(self):
        """Stop the HTTP server."""
        logger.info("Stopping HTTP server")

        if self.site:
            await self.site.stop()

        if self.runner:
            await self.runner.cleanup()

        logger.info("HTTP server stopped")
