"""
Shared test fixtures and helpers for the booture test suite.
"""

import pytest

from booture.testing import ResourceProbe


@pytest.fixture
def probe():
    """Fresh ResourceProbe recording acquisitions and releases."""
    return ResourceProbe()


@pytest.fixture
def app_graph(probe):
    """
    config -> (postgres, redis) -> app, declared out of order.

    Layers: [config], [postgres, redis], [app].
    """
    return [
        probe.declare("app", ["redis", "postgres"], delay=0.01),
        probe.declare("postgres", ["config"], delay=0.02),
        probe.declare("config", [], value={"postgres": "pg://", "redis": "redis://"}),
        probe.declare("redis", ["config"], delay=0.02),
    ]
