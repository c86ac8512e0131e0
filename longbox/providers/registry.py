"""Factory for the configured provider clients."""

import httpx

from longbox.config import (
    COMICVINE_BUCKET_CAPACITY,
    COMICVINE_REFILL_PER_SECOND,
    METRON_BUCKET_CAPACITY,
    METRON_REFILL_PER_SECOND,
    Settings,
    settings,
)
from longbox.providers.base import ProviderClient
from longbox.providers.comicvine import ComicVineClient
from longbox.providers.metron import MetronClient
from longbox.services.collection_graph import CollectionGraph
from longbox.sync.clock import Clock
from longbox.sync.rate_limiter import RateLimiter


def build_providers(
    http_client: httpx.AsyncClient,
    rate_limiter: RateLimiter,
    graph: CollectionGraph,
    config: Settings = settings,
    clock: Clock | None = None,
) -> list[ProviderClient]:
    """
    Construct the configured provider clients, in configured order.

    Registers each provider's token bucket on the limiter. Series ids are read
    live from the graph, so series added later are fetchable without a rebuild.
    """
    rate_limiter.configure(
        ComicVineClient.provider_id, COMICVINE_BUCKET_CAPACITY, COMICVINE_REFILL_PER_SECOND
    )
    rate_limiter.configure(
        MetronClient.provider_id, METRON_BUCKET_CAPACITY, METRON_REFILL_PER_SECOND
    )

    common = {
        "record_ttl": config.record_ttl_seconds,
        "admission_timeout": config.admission_wait_seconds,
        "clock": clock,
    }
    return [
        MetronClient(
            http_client,
            rate_limiter,
            graph.provider_index(MetronClient.provider_id),
            base_url=config.metron_base_url,
            username=config.metron_username,
            password=config.metron_password,
            **common,
        ),
        ComicVineClient(
            http_client,
            rate_limiter,
            graph.provider_index(ComicVineClient.provider_id),
            base_url=config.comicvine_base_url,
            api_key=config.comicvine_api_key,
            **common,
        ),
    ]
