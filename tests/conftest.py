"""Pytest configuration and fixtures for checkgate tests."""

import sys
import tempfile
from pathlib import Path

import pytest

from checkgate.core.log import ConsoleSink, setup_logger
from checkgate.registry import CheckDescriptor


@pytest.fixture(autouse=True, scope="session")
def configure_logging():
    """Configure logging for console-only mode during tests.

    Debug output shows up in failing test reports without sending
    anything to logfire.dev.
    """
    test_log_root = Path(tempfile.gettempdir()) / "checkgate-tests"
    setup_logger(
        log_root=test_log_root,
        run_name="test",
        console=ConsoleSink(level="debug"),
    )


@pytest.fixture
def isolated_config(tmp_path, monkeypatch):
    """Run State() loading against an empty project directory.

    Hides the user's own config files and pytest's argv from the
    settings sources, and returns the project directory.
    """
    project = tmp_path / "project"
    project.mkdir()
    monkeypatch.chdir(project)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    monkeypatch.setattr(sys, "argv", ["checkgate"])
    return project


@pytest.fixture
def make_check():
    """Factory for CheckDescriptors with test-friendly defaults."""
    def make(name, command, **kwargs):
        kwargs.setdefault("timeout", 10)
        return CheckDescriptor(name=name, command=command, **kwargs)
    return make
