"""Shared fixtures for relay unit tests."""

from collections.abc import Callable

import pytest

from broadcast.config import UpstreamConfig
from tests.helpers.relay_fakes import FakeUpstream, MockConnection


@pytest.fixture
def make_connection() -> Callable[[str], MockConnection]:
    """Factory for open mock connections with unique ids."""
    counter = 0

    def _make(prefix: str = "conn") -> MockConnection:
        nonlocal counter
        counter += 1
        return MockConnection(f"{prefix}-{counter:03d}")

    return _make


@pytest.fixture
def upstreams() -> list[FakeUpstream]:
    """Every upstream link created by the relay under test, in order."""
    return []


@pytest.fixture
def upstream_factory(upstreams: list[FakeUpstream]) -> Callable[[str], FakeUpstream]:
    """Upstream factory that records the links it creates."""

    def _factory(api_key: str) -> FakeUpstream:
        link = FakeUpstream(api_key)
        upstreams.append(link)
        return link

    return _factory


@pytest.fixture
def upstream_config() -> UpstreamConfig:
    """Upstream configuration with a test API key."""
    return UpstreamConfig(api_key="sk-test")
