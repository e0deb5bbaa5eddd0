"""
Pytest configuration - runs before test collection.

Adds project root to sys.path so local modules can be imported.
Configures logging for test output and provides shared linkages/curves.
"""
from __future__ import annotations

import logging
import sys
from pathlib import Path

import numpy as np
import pytest

# Add project root to path for local module imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from fourbar_tools.variants import ParameterVector  # noqa: E402
from fourbar_tools.variants import Variant  # noqa: E402

# Configure logging for tests
# Default to INFO level - use pytest -s --log-cli-level=DEBUG for more verbose output
logging.basicConfig(
    level=logging.INFO,
    format='%(levelname)s - %(name)s - %(message)s',
    datefmt='%H:%M:%S',
)

# Optimizer progress lines are noisy at INFO
logging.getLogger('fourbar_tools').setLevel(logging.INFO)
logging.getLogger('fourbar_tools.optimizers').setLevel(logging.WARNING)


@pytest.fixture
def reference_linkage():
    """Planar linkage used throughout the synthesis scenarios (change-point loop)."""
    return ParameterVector(Variant.PLANAR, [0, 0, 0, 3, 5, 4, 6, 2.236, 0.4636])


@pytest.fixture
def crank_rocker():
    """Grashof crank-rocker with comfortable assembly margins."""
    return ParameterVector(Variant.PLANAR, [0.5, -1.0, 0.3, 4.0, 1.0, 3.0, 3.5, 2.0, 0.5])


@pytest.fixture
def double_rocker():
    """Non-Grashof loop whose driver rocks inside one interval."""
    return ParameterVector(Variant.PLANAR, [0, 0, 0, 2.0, 3.0, 2.5, 2.2, 1.5, 0.8])


@pytest.fixture
def spherical_linkage():
    """Spherical crank-rocker on a radius-2 sphere away from the origin."""
    return ParameterVector(
        Variant.SPHERICAL,
        [1.0, 2.0, 3.0, 2.0, 0.3, 0.2, 0.1, 0.8, 0.2, 0.6, 0.7, 0.4, 0.5],
    )


@pytest.fixture
def blob_curve():
    """Closed curve with distinct first-harmonic axes and no rotational symmetry."""
    t = np.linspace(0, 2 * np.pi, 128, endpoint=False)
    return np.column_stack([
        np.cos(t) + 0.3 * np.cos(2 * t),
        0.6 * np.sin(t) + 0.2 * np.sin(3 * t),
    ])


@pytest.fixture
def motion_linkage():
    """The crank-rocker loop with its motion line 0.7 rad off the coupler link."""
    return ParameterVector(Variant.PLANAR_MOTION, [0.5, -1.0, 0.3, 4.0, 1.0, 3.0, 3.5, 2.0, 0.5, 0.7])
