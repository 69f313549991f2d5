"""
Shared fixtures.
"""
import pytest

from stagerun.api.manager import RunManager
from stagerun.steps.registry import StepExecutorRegistry


@pytest.fixture(autouse=True)
def fresh_registries():
    """Each test gets fresh executor and run registries."""
    StepExecutorRegistry.reset_instance()
    RunManager.reset_instance()
    yield
    StepExecutorRegistry.reset_instance()
    RunManager.reset_instance()


@pytest.fixture
def workspace(tmp_path):
    ws = tmp_path / "workspace"
    ws.mkdir()
    return ws
