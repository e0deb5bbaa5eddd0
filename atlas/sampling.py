"""
sampling.py - Design of Experiments (DOE) over the normalized parameter space.

Sampling strategies for atlas builds:
- Sobol sequences (quasi-random low-discrepancy, default)
- Regular meshgrid (Cartesian product of gradations per axis)
- Uniform random (seeded)

Main functions:
    - get_gradations(): evenly spaced values per parameter
    - sample_parameters(): (n, n_params) design for a variant
"""
from __future__ import annotations

import itertools
from typing import Literal

import numpy as np
from pyDOE3 import sobol_sequence

from configs.logging_config import get_logger
from fourbar_tools.variants import layout
from fourbar_tools.variants import normalized_bounds
from fourbar_tools.variants import Variant

logger = get_logger(__name__)

SamplingMode = Literal['sobol', 'meshgrid', 'random']

# Parameters that wrap around; their grids skip the duplicate end value
PERIODIC_PARAMETERS = ('g', 'e')


def get_gradations(variant: Variant, n: int) -> list[np.ndarray]:
    """
    Generate N evenly-spaced values for each normalized parameter of a variant.

    Length-like parameters include both bounds. Angle parameters sample a
    full turn without repeating its end.

    Example:
        >>> [len(g) for g in get_gradations(Variant.PLANAR, 3)]
        [3, 3, 3, 3, 3]
    """
    if n < 1:
        raise ValueError(f'n must be >= 1, got {n}')
    gradations = []
    for name, (lower, upper) in zip(layout(variant, True), normalized_bounds(variant)):
        if n == 1:
            gradations.append(np.array([(lower + upper) / 2]))
        elif name in PERIODIC_PARAMETERS:
            gradations.append(np.linspace(lower, upper, n, endpoint=False))
        else:
            gradations.append(np.linspace(lower, upper, n))
    return gradations


def sample_parameters(
    variant: Variant,
    n: int,
    mode: SamplingMode = 'sobol',
    seed: int | None = None,
) -> np.ndarray:
    """
    Sample normalized parameter vectors of a variant.

    Args:
        variant: Mechanism variant (selects layout and bounds)
        n: Meaning depends on mode:
           - 'meshgrid': Number of gradations per parameter (n^d total points)
           - 'sobol': Total number of sample points (pyDOE3 rounds up to a power of 2)
           - 'random': Total number of sample points
        mode: Sampling strategy
        seed: Seed for 'sobol' scrambling and 'random'

    Returns:
        (n_samples, n_params) array inside the normalized bounds

    References:
    - Sobol: https://pydoe3.readthedocs.io/en/latest/reference/low_discrepancy_sequences/
    """
    variant = Variant(variant)
    bounds = normalized_bounds(variant)
    num_dims = len(bounds)
    if n < 1:
        raise ValueError(f'n must be >= 1, got {n}')

    if mode == 'meshgrid':
        # Total samples = n^num_dims
        design = np.array(list(itertools.product(*get_gradations(variant, n))))
        logger.debug(f'Meshgrid generated {len(design)} samples from {n} gradations per parameter')
    elif mode == 'sobol':
        design = sobol_sequence(
            n=n,
            d=num_dims,
            scramble=True,  # Scrambling improves statistical properties
            seed=seed,
            bounds=bounds,  # pyDOE3 handles scaling for us
        )
        logger.debug(f'Sobol sequence generated {len(design)} points for {num_dims} parameters')
    elif mode == 'random':
        rng = np.random.default_rng(seed)
        design = rng.uniform(bounds[:, 0], bounds[:, 1], (n, num_dims))
    else:
        raise ValueError(f"Unknown mode '{mode}'. Choose from: 'sobol', 'meshgrid', 'random'")
    return np.asarray(design, dtype=np.float64)
