from __future__ import annotations

from aafeed.core.config import AAFeedConfig
from aafeed.infra.clients.aggregator import AggregatorClient
from aafeed.infra.clients.http import HttpAggregatorClient
from aafeed.infra.clients.synthetic import (
    SyntheticAggregatorClient,
    SyntheticProviderState,
)
from aafeed.infra.clients.timeout import TimeoutAggregatorClient


def create_provider_client(config: AAFeedConfig) -> AggregatorClient:
    """Create the configured provider adapter, without the timeout guard."""
    if config.provider == "synthetic":
        return SyntheticAggregatorClient(
            SyntheticProviderState(),
            ready_delay_seconds=config.synthetic_ready_delay_seconds,
            seed=config.synthetic_seed,
        )

    if config.provider == "http":
        return HttpAggregatorClient(
            base_url=config.provider_base_url,
            api_key=config.provider_api_key,
            timeout_seconds=config.provider_timeout_seconds,
        )

    raise ValueError(f"Unknown aggregator provider: {config.provider}")


def build_aggregator_client(config: AAFeedConfig) -> TimeoutAggregatorClient:
    """Create the configured provider wrapped in a per-call timeout."""
    return TimeoutAggregatorClient(
        create_provider_client(config),
        timeout_seconds=config.provider_timeout_seconds,
    )
