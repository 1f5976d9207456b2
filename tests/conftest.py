"""Shared pytest configuration and fixtures for the simfleet test suite."""

import sys
from pathlib import Path
from typing import Dict

import pytest

# Ensure the project root is in the path for imports
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from simfleet.core.devices.metadata import DeviceMetadata, DeviceMetadataLookup
from tests.fakes import FakeGateway, sample_fleet


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


# =============================================================================
# Shared Fixtures
# =============================================================================

@pytest.fixture
def static_specs() -> Dict[str, DeviceMetadata]:
    return {
        "iPhone 16": DeviceMetadata(6.1, "1179*2556", "393*852", "iPhone"),
        "iPhone 15": DeviceMetadata(6.1, "1179*2556", "393*852", "iPhone"),
        "iPhone SE (3rd generation)": DeviceMetadata(4.7, "750*1334", "375*667", "iPhone"),
        "iPad Air 11-inch (M2)": DeviceMetadata(11.0, "1640*2360", "820*1180", "iPad"),
    }


@pytest.fixture
def lookup(static_specs) -> DeviceMetadataLookup:
    return DeviceMetadataLookup(static_specs)


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway(devices=sample_fleet())
