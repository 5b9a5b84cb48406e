"""Shared fixtures for the failover tests."""

import random
from collections.abc import Callable
from typing import Any

import pytest

from ai_failover.core.config.manager import ConfigurationManager
from ai_failover.core.config.models import ResilienceConfig
from ai_failover.core.providers.base import BaseProvider
from ai_failover.core.runtime import ResilienceRuntime, build_runtime
from ai_failover.tests.helpers import CREDENTIALS, ManualClock, RecordingSleep, make_config


@pytest.fixture
def environ() -> dict[str, str]:
    return dict(CREDENTIALS)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def manual_clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def runtime_factory(tmp_path, environ, recording_sleep) -> Callable[..., ResilienceRuntime]:
    """Build a runtime around scripted adapters."""

    def factory(
        adapters: dict[str, BaseProvider],
        config: ResilienceConfig | None = None,
        **kwargs: Any,
    ) -> ResilienceRuntime:
        manager = ConfigurationManager(config_path=tmp_path / "failover.json", environ=environ)
        manager.save(config or make_config())
        kwargs.setdefault("sleep", recording_sleep)
        kwargs.setdefault("rng", random.Random(7))
        kwargs.setdefault("strict", False)
        return build_runtime(manager, environ=environ, adapters=adapters, **kwargs)

    return factory
