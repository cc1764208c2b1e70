"""Pytest configuration and shared fixtures for the panelmark test suite.

This module provides shared fixtures, test configuration, and utilities
that are used across the entire test suite.
"""

from pathlib import Path
from typing import Generator

import pytest
from utils import FakeDiagramEngine, FakeMathEngine, cleanup_test_dir, create_test_temp_dir

from panelmark.annotations import NodeAnnotations
from panelmark.config import PanelConfig
from panelmark.engines import EngineServices


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests - fast, isolated component tests")
    config.addinivalue_line("markers", "integration: Integration tests - component interaction tests")
    config.addinivalue_line("markers", "cli: Tests related to command-line interface")


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for test files.

    Yields
    ------
    Path
        Temporary directory path that will be cleaned up after test.

    """
    temp_path = create_test_temp_dir()
    try:
        yield temp_path
    finally:
        cleanup_test_dir(temp_path)


@pytest.fixture
def fast_config() -> PanelConfig:
    """Provide a configuration with short timings for scheduler tests."""
    return PanelConfig(
        frame_interval=0.001,
        feedback_interval=0.05,
        root_check_interval=0.02,
        success_feedback_seconds=0.02,
    )


@pytest.fixture
def annotations() -> NodeAnnotations:
    return NodeAnnotations()


@pytest.fixture
def math_engine() -> FakeMathEngine:
    return FakeMathEngine()


@pytest.fixture
def diagram_engine() -> FakeDiagramEngine:
    return FakeDiagramEngine()


@pytest.fixture
def services(math_engine: FakeMathEngine, diagram_engine: FakeDiagramEngine) -> EngineServices:
    """Provide engine services backed by the fake engines."""
    return EngineServices(math_engine=math_engine, diagram_engine=diagram_engine)
