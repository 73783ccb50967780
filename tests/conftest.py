"""Pytest fixtures for actuator tests."""

from typing import Any, Callable, Dict

import pytest

from actuator.config import ConfigManager
from actuator.config.config_manager import _deep_merge
from tests.helpers import FakeBroker

BASE_CONFIG: Dict[str, Any] = {
    'broker_url': 'https://broker.test',
    'agent_token': 'seks_agent_token',
    'actuator_id': 'act-1',
    'reconnect': {'base_ms': 1, 'max_ms': 5, 'jitter_ms': 0},
}


@pytest.fixture
def make_config(tmp_path) -> Callable[..., ConfigManager]:
    """Build a ConfigManager from BASE_CONFIG plus nested overrides."""

    def _make(**overrides: Any) -> ConfigManager:
        data = _deep_merge(BASE_CONFIG, {'cwd': str(tmp_path)})
        return ConfigManager(overrides=_deep_merge(data, overrides))

    return _make


@pytest.fixture
def config(make_config) -> ConfigManager:
    return make_config()


@pytest.fixture
def broker() -> FakeBroker:
    return FakeBroker()
