"""HTTP handler answering Prometheus scrapes."""

import logging
from typing import Optional

from aiohttp import web
from prometheus_client.exposition import choose_encoder

from .assembler import RegistryAssembler
from .exceptions import CollectorInitError
from .registry import Gatherers

logger = logging.getLogger(__name__)

FULL_SCRAPE = "full"
FILTERED_SCRAPE = "filtered"


class ScrapeHandler:
    """
    Serves ``GET <metrics path>[?collect=<prefix>...]``.

    Without ``collect`` parameters every configured prefix is scraped,
    otherwise only the configured prefixes that were named. When the
    exporter's own metrics share the path, ``additional_registry`` is exposed
    first, followed by the scrape's registry.
    """

    def __init__(self, assembler: RegistryAssembler, additional_registry=None):
        self.assembler = assembler
        self.additional_registry = additional_registry

    async def __call__(self, request: web.Request) -> web.Response:
        selection = frozenset(request.query.getall('collect', []))
        mode = FILTERED_SCRAPE if selection else FULL_SCRAPE
        logger.debug(f"Handling {mode} scrape, selection={sorted(selection)}")

        try:
            registry = self.assembler.build(selection)
        except CollectorInitError as e:
            logger.error(f"Failed to build collectors: {e}")
            return web.Response(
                status=500,
                text=f"An error has occurred while building the collectors:\n\n{e}\n",
            )

        await registry.refresh()

        gatherer = registry
        if self.additional_registry is not None:
            gatherer = Gatherers(self.additional_registry, registry)

        return render_metrics(request, gatherer)


def render_metrics(request: web.Request, gatherer) -> web.Response:
    """Serialize a registry in the format negotiated through ``Accept``."""
    encoder, content_type = choose_encoder(request.headers.get('Accept', ''))
    try:
        output = encoder(gatherer)
    except Exception as e:
        logger.error(f"Error encoding metrics: {e}", exc_info=True)
        return web.Response(
            status=500,
            text=f"An error has occurred while serving metrics:\n\n{e}\n",
        )

    return web.Response(body=output, headers={'Content-Type': content_type})
