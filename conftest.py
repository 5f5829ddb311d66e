"""
Pytest configuration and fixtures for classifieds crawler tests.
"""

import pytest
from hypothesis import settings, Verbosity
from pathlib import Path
import os

from config import SystemConfig, CrawlerConfig

# Configure Hypothesis for faster test runs
settings.register_profile("fast", max_examples=5, deadline=5000, verbosity=Verbosity.quiet)
settings.register_profile("thorough", max_examples=100, deadline=30000, verbosity=Verbosity.normal)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "fast"))


@pytest.fixture(autouse=True)
def isolated_log_dir(tmp_path, monkeypatch):
    """Keep per-concern log files out of the working tree."""
    monkeypatch.setenv("CRAWLER_LOG_DIR", str(tmp_path / "logs"))


@pytest.fixture
def checkpoint_path(tmp_path):
    """Checkpoint file path inside a fresh temporary directory."""
    return str(tmp_path / "data" / "state.json")


@pytest.fixture
def output_path(tmp_path):
    """Output CSV path inside a fresh temporary directory."""
    return str(tmp_path / "data" / "data.csv")


@pytest.fixture
def test_config(checkpoint_path, output_path):
    """Small crawl space with no politeness delay."""
    config = SystemConfig(
        crawler=CrawlerConfig(
            catalog_url_template="https://example.test/{region}?filter={filter}&page={page}",
            regions=["north", "south"],
            max_filter=2,
            max_page=2,
            min_delay=0.0,
            max_delay=0.0,
            max_attempts=3,
            listing_max_attempts=2,
        ),
        log_file=None
    )
    config.storage.checkpoint_path = checkpoint_path
    config.storage.output_path = output_path
    return config


def pytest_configure(config):
    """Configure pytest with custom settings."""
    import logging
    logging.getLogger("hypothesis").setLevel(logging.WARNING)


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers."""
    for item in items:
        if "properties" in item.fspath.basename or any(
            marker.name == "given" for marker in item.iter_markers()
        ):
            item.add_marker(pytest.mark.property)

        if "worker" in item.fspath.basename:
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)
