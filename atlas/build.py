"""
build.py - Offline atlas construction.

Samples the normalized parameter space of a variant, keeps the linkages
whose motion suits the curve mode, and stores one descriptor per feasible
assembly state.

=============================================================================
CRITICAL PARAMETERS - Understanding Their Impact
=============================================================================

sampling_resolution:
    Number of Sobol/random samples, or gradations per axis for 'meshgrid'
    (meshgrid grows as n^d: 5 parameters x 10 gradations = 100,000 points).
    A large share of samples is rejected (cannot assemble, wrong motion type).

harmonic:
    Fixed descriptor length of every entry. Queries with other harmonic
    counts are zero padded, so 15-20 covers typical coupler curves.

res:
    Input angle samples per entry curve. Build time is linear in it.

=============================================================================
"""
from __future__ import annotations

import threading
import time
from dataclasses import asdict
from dataclasses import dataclass

import numpy as np

from atlas.sampling import sample_parameters
from atlas.sampling import SamplingMode
from atlas.store import AtlasStore
from configs.logging_config import get_logger
from configs.logging_config import log_separator
from fourbar_tools.descriptor import normalize
from fourbar_tools.errors import DegenerateCurve
from fourbar_tools.errors import InfeasibleMechanism
from fourbar_tools.kinematics import curve
from fourbar_tools.linkage_states import AngleBound
from fourbar_tools.variants import CurveMode
from fourbar_tools.variants import ParameterVector
from fourbar_tools.variants import Variant

logger = get_logger(__name__)


@dataclass
class AtlasBuildConfig:
    """
    Settings of an atlas build.

    Attributes:
        sampling: 'sobol', 'meshgrid' or 'random'
        harmonic: Descriptor harmonics stored per entry
        res: Input angle samples per entry curve
        seed: Seed for Sobol scrambling / random sampling
        log_interval: Log progress every N samples (0 disables)
    """
    sampling: SamplingMode = 'sobol'
    harmonic: int = 20
    res: int = 90
    seed: int | None = 0
    log_interval: int = 1000

    def to_dict(self) -> dict:
        return asdict(self)


def build_atlas(
    variant: Variant,
    sampling_resolution: int,
    *,
    mode: CurveMode = CurveMode.CLOSED,
    config: AtlasBuildConfig | None = None,
    cancel: threading.Event | None = None,
) -> AtlasStore:
    """
    Build an atlas by sampling normalized linkages.

    Args:
        variant: Mechanism variant
        sampling_resolution: Sample count (see AtlasBuildConfig.sampling)
        mode: CLOSED (full-turn drivers) or OPEN (rocking drivers)
        config: Build settings
        cancel: Checked once per sample; when set, the entries built so far
            are returned

    Returns:
        AtlasStore (insertion ordered by sample, then assembly state)

    Raises:
        ValueError: PARTIAL mode (partial targets have no fixed descriptor to store)
    """
    variant = Variant(variant)
    mode = CurveMode(mode)
    config = config or AtlasBuildConfig()
    if mode is CurveMode.PARTIAL:
        raise ValueError('atlases are built for CLOSED or OPEN curves; PARTIAL targets are matched by window search')

    samples = sample_parameters(variant, sampling_resolution, config.sampling, config.seed)
    log_separator(logger, 'ATLAS BUILD')
    logger.info(
        f'Building {variant.value}/{mode.value} atlas from {len(samples)} {config.sampling} samples '
        f'(harmonic={config.harmonic}, res={config.res})',
    )
    start = time.perf_counter()
    codes: list[np.ndarray] = []
    stats: list[int] = []
    efds: list[np.ndarray] = []
    rejected = 0
    cancelled = False

    for i, row in enumerate(samples):
        if cancel is not None and cancel.is_set():
            cancelled = True
            break
        if config.log_interval and i and i % config.log_interval == 0:
            logger.info(f'  [{i}/{len(samples)}] entries={len(codes)} rejected={rejected}')

        params = ParameterVector(variant, row, normalized=True)
        bound = AngleBound.of(params)
        if not bound.is_valid or bound.is_open != mode.is_result_open:
            rejected += 1
            continue
        for stat in bound.states():
            candidate = params.with_stat(stat)
            try:
                points = curve(candidate, mode, config.res)
                if len(points) <= 2:
                    continue
                descriptor = normalize(points, mode, config.harmonic)
            except (InfeasibleMechanism, DegenerateCurve) as e:
                logger.debug(f'Sample {i} {stat.name} rejected: {e}')
                continue
            codes.append(candidate.values)
            stats.append(int(stat))
            efds.append(descriptor.vector)

    if cancelled:
        logger.warning(f'Atlas build cancelled: cancelled=True after {i} of {len(samples)} samples')
    store = AtlasStore(variant, mode, config.harmonic, np.array(codes), np.array(stats), np.array(efds))
    logger.info(f'Built {store!r} in {time.perf_counter() - start:.1f}s ({rejected} samples rejected)')
    return store
