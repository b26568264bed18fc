"""Pytest configuration and shared fixtures."""

import pytest

from listing_monitor.models.config import MonitorConfig, TargetConfig
from listing_monitor.models.data_models import Target
from listing_monitor.monitoring.logger import StructuredLogger
from tests.fixtures.fakes import InMemoryRepository, RecordingNotifier


@pytest.fixture
def logger():
    return StructuredLogger(name="listing_monitor.test", level="DEBUG")


@pytest.fixture
def sample_config(tmp_path):
    """Provide a sample configuration for testing."""
    return MonitorConfig(
        targets=[
            TargetConfig(id="alpha", url="https://listings.test/alpha"),
            TargetConfig(id="beta", url="https://listings.test/beta"),
        ],
        inter_request_delay=2.0,
        initial_delay_min=0.0,
        initial_delay_max=0.0,
        fetch_timeout=5.0,
        browser_enabled=False,
        run_on_start=True,
        data_dir=str(tmp_path / "data"),
    )


@pytest.fixture
def target():
    return Target(id="alpha", url="https://listings.test/alpha")


@pytest.fixture
def repository():
    return InMemoryRepository()


@pytest.fixture
def notifier():
    return RecordingNotifier()
