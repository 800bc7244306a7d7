"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for kms_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from kms_controller.config import Config  # noqa: E402
from kms_mock import MockClientFactory, MockKmsClient  # noqa: E402


@pytest.fixture
def config() -> Config:
    """Default configuration, independent of the environment."""
    return Config()


@pytest.fixture
def factory() -> MockClientFactory:
    return MockClientFactory(default_region="us-east-1")


@pytest.fixture
def kms(factory: MockClientFactory) -> MockKmsClient:
    """The mock KMS client for the handler's region."""
    return factory.get_client("us-east-1")
