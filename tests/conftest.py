"""Pytest configuration and fixtures for GASP tests."""

import pytest

from tests.helpers.synthetic_data import clustered_night_rows, write_details_csv


def pytest_configure(config):
    """Register custom test markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests that do not require external dependencies"
    )
    config.addinivalue_line(
        "markers", "business_logic: Tests for core business logic and algorithms"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests combining multiple components"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take significant time (>5 seconds)"
    )


@pytest.fixture(autouse=True)
def isolated_app_dir(tmp_path, monkeypatch):
    """Point config and log files at a temporary directory for every test."""
    app_dir = tmp_path / "gasp_home"
    config_path = app_dir / "config.toml"

    monkeypatch.setattr("gasp.config.get_config_path", lambda: config_path)
    monkeypatch.setattr("gasp.cli.get_config_path", lambda: config_path)
    monkeypatch.setattr("gasp.logging_config.DEFAULT_LOG_DIR", app_dir / "logs")
    monkeypatch.setattr("gasp.logging_config._logging_configured", False)

    return app_dir


@pytest.fixture
def config_path(isolated_app_dir):
    """Path of the (isolated) config file."""
    return isolated_app_dir / "config.toml"


@pytest.fixture
def night_rows():
    """Details rows for a short night with one cluster and one false negative."""
    return clustered_night_rows()


@pytest.fixture
def night_csv(tmp_path, night_rows):
    """The same night written to an OSCAR Details CSV file."""
    return write_details_csv(tmp_path / "Details.csv", night_rows)
