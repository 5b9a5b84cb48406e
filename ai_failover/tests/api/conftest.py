"""Test configuration and fixtures for API tests."""

import pytest
from fastapi.testclient import TestClient

from ai_failover.api.app import create_app
from ai_failover.tests.helpers import ScriptedProvider

PROVIDERS = ("google-ai", "github-ai", "ollama")


@pytest.fixture
def adapters():
    return {provider_id: ScriptedProvider(provider_id) for provider_id in PROVIDERS}


@pytest.fixture
def runtime(runtime_factory, adapters):
    return runtime_factory(adapters)


@pytest.fixture(scope="function")
def test_client(runtime):
    """Client for an app around scripted providers, without the probe loop."""
    app = create_app(runtime, start_monitor=False)
    with TestClient(app) as client:
        yield client
