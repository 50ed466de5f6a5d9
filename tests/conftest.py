"""
pytest configuration and fixtures for driver codec tests.

Provides reusable fixtures for:
- Compiled shipped drivers
- Hypothesis property-based testing configuration
"""

import os
import sys
from pathlib import Path

import pytest

# Add project paths
sys.path.insert(0, str(Path(__file__).parent.parent / "tools"))

from driver_loader import load_driver

DRIVERS_DIR = Path(__file__).parent.parent / "drivers"

# Configure Hypothesis profiles
try:
    from hypothesis import settings, Verbosity, Phase

    # Default profile: balanced speed and coverage
    settings.register_profile(
        "default",
        max_examples=100,
        deadline=None,
    )

    # CI profile: more thorough testing
    settings.register_profile(
        "ci",
        max_examples=500,
        deadline=None,
        suppress_health_check=[],
        phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    )

    # Dev profile: fast iteration
    settings.register_profile(
        "dev",
        max_examples=10,
        deadline=None,
    )

    # Debug profile: verbose output
    settings.register_profile(
        "debug",
        max_examples=10,
        verbosity=Verbosity.verbose,
        deadline=None,
    )

    settings.load_profile(os.environ.get("HYPOTHESIS_PROFILE", "default"))

except ImportError:
    pass  # Hypothesis not installed


@pytest.fixture(scope="session")
def electrex():
    """The base Electrex driver (literal names, 13-byte status frames)."""
    return load_driver(DRIVERS_DIR / "electrex_sample.yaml")


@pytest.fixture(scope="session")
def electrex_hex():
    """The extended Electrex driver (hex names, 28-byte status frames)."""
    return load_driver(DRIVERS_DIR / "electrex_sample_hex.yaml")


@pytest.fixture(scope="session")
def sensor():
    """Tag-stream sensor with the pulse counter downlink commands."""
    return load_driver(DRIVERS_DIR / "sample_sensor.yaml")


@pytest.fixture(scope="session")
def thermostat():
    """Tag-stream thermostat with a scaled (div 10) setpoint downlink."""
    return load_driver(DRIVERS_DIR / "sample_thermostat.yaml")


# Markers for test categorization
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
