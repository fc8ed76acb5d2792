"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import pytest

from cosmopm.config import SimulationConfig
from cosmopm.core.lattice import Lattice
from cosmopm.core.parallel import ParallelContext


@pytest.fixture
def grid_size():
    """Small grid for fast unit tests."""
    return 8


@pytest.fixture
def context():
    return ParallelContext()


@pytest.fixture
def lattice(grid_size, context):
    return Lattice(grid_size, context=context)


@pytest.fixture
def sample_config_dict(grid_size):
    """Minimal valid SimulationConfig as a dictionary."""
    return {
        "grid_size": grid_size,
        "boxsize": 320.0,
        "diagnostics": {"info_interval": 1, "pk_interval": 0},
    }


@pytest.fixture
def small_config(sample_config_dict):
    """Small SimulationConfig for fast unit tests."""
    return SimulationConfig(**sample_config_dict)
