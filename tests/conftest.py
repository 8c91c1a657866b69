"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from aafeed.adapters.db.facade import DB
from aafeed.adapters.db.repository import Repositories
from aafeed.infra.clients.synthetic import (
    SyntheticAggregatorClient,
    SyntheticProviderState,
)


@pytest.fixture
def db() -> DB:
    """In-memory database with all tables created."""
    database = DB("sqlite:///:memory:")
    database.create_all()
    return database


@pytest.fixture
def repositories(db: DB) -> Repositories:
    return db.repositories()


@pytest.fixture
def synthetic_client() -> Iterator[SyntheticAggregatorClient]:
    """Synthetic provider whose sessions are READY as soon as they open."""
    client = SyntheticAggregatorClient(
        SyntheticProviderState(), ready_delay_seconds=0, seed="test-seed"
    )
    yield client
    client.close()
