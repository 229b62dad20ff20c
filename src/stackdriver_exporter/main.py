"""Stackdriver Exporter Service - Google Cloud Monitoring metrics for Prometheus."""

import asyncio
import logging
import os
import signal
import sys
from typing import List, Optional

from . import __version__
from .assembler import RegistryAssembler
from .clients.auth import discover_default_project
from .clients.monitoring_client import MonitoringClient, create_monitoring_client
from .config.settings import ExporterConfig, load_config
from .exceptions import AuthError, ExporterError
from .server import ExporterServer
from .utils.logging import setup_logging

logger = logging.getLogger(__name__)


async def resolve_project_ids(config: ExporterConfig, client: MonitoringClient) -> List[str]:
    """
    Projects to scrape: those matching the search filter, then the explicit
    ones. With neither configured, the project of the default credentials.
    """
    google = config.google
    project_ids: List[str] = []

    if google.projects_filter:
        project_ids.extend(await client.list_projects(google.projects_filter))

    project_ids.extend(google.project_ids)

    if not google.projects_filter and not google.project_ids:
        logger.info("Neither project IDs nor a projects filter were provided. Trying to discover it")
        project_ids.append(await asyncio.to_thread(discover_default_project))

    # A project both matched by the filter and listed explicitly is scraped once
    project_ids = list(dict.fromkeys(project_ids))
    if not project_ids:
        raise AuthError("No Google project to collect metrics from")
    return project_ids


class ExporterService:
    """Main exporter service."""

    def __init__(self, config: ExporterConfig):
        self.config = config
        self.client: Optional[MonitoringClient] = None
        self.server: Optional[ExporterServer] = None
        self._shutdown_event = asyncio.Event()

    async def start(self):
        """Start the exporter and serve until a shutdown signal arrives."""
        logger.info("Starting Stackdriver Exporter")

        self.client = await asyncio.to_thread(create_monitoring_client, self.config.stackdriver)
        await self.client.start()

        try:
            project_ids = await resolve_project_ids(self.config, self.client)

            logger.info(
                f"Starting stackdriver_exporter version={__version__} projects={project_ids} "
                f"metric_prefixes={list(self.config.monitoring.metrics_prefixes)} "
                f"extra_filters={','.join(self.config.monitoring.filters)} "
                f"projects_filter={self.config.google.projects_filter!r}"
            )

            assembler = RegistryAssembler.from_config(self.config, project_ids, self.client)
            self.server = ExporterServer(self.config.web, assembler)

            self._setup_signal_handlers()
            await self.server.start()

            # Wait for shutdown signal
            await self._shutdown_event.wait()

            logger.info("Shutting down Stackdriver Exporter")
        finally:
            await self.stop()

        logger.info("Stackdriver Exporter stopped")

    async def stop(self):
        if self.server:
            await self.server.stop()
            self.server = None
        if self.client:
            await self.client.close()
            self.client = None

    def _setup_signal_handlers(self):
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def signal_handler(signum, frame):
            logger.info(f"Received signal {signum}, initiating shutdown")
            loop.call_soon_threadsafe(self._shutdown_event.set)

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)


async def main():
    """Main entry point."""
    config_file = os.getenv("CONFIG_FILE", "config/local.yaml")

    try:
        config = load_config(config_file)
    except ExporterError as e:
        logging.basicConfig(level=logging.INFO)
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    setup_logging(config.logging)
    service = ExporterService(config)

    try:
        await service.start()
    except (ExporterError, OSError) as e:
        logger.error(f"Exporter failed: {e}", exc_info=True)
        sys.exit(1)


def run():
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
