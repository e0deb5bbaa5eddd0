"""
atlas - Precomputed descriptor atlas for nearest-neighbour pre-matching.

Main components:
    - build_atlas(): offline build by sampling the normalized parameter space
    - AtlasBuildConfig: sampling mode, harmonic count, curve resolution, seed
    - AtlasStore: immutable store with query / merge / save / load
    - AtlasMatch: query result; ``fit_to`` moves the match onto a target
    - sample_parameters(): Sobol / meshgrid / random designs (pyDOE3)

Basic usage:
    >>> from atlas import build_atlas, AtlasStore
    >>> store = build_atlas(Variant.PLANAR, 4096, mode=CurveMode.CLOSED)
    >>> path = store.save()  # ATLAS_DIR / 'planar_closed.npz'
    >>> store = AtlasStore.load(path)
    >>> matches = store.query(target_descriptor, k=10)
"""
from __future__ import annotations

from .build import AtlasBuildConfig
from .build import build_atlas
from .sampling import get_gradations
from .sampling import sample_parameters
from .store import AtlasMatch
from .store import AtlasStore

__all__ = [
    'AtlasBuildConfig',
    'build_atlas',
    'AtlasStore',
    'AtlasMatch',
    'sample_parameters',
    'get_gradations',
]
