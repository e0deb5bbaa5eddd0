"""
store.py - Immutable atlas of (parameter vector, descriptor) entries.

An atlas is three parallel, insertion-ordered arrays:

    codes (N, n_params)        normalized parameter vectors
    stat  (N,)                 assembly state of each entry (Stat value)
    efd   (N, H * 2 * dim)     flattened descriptor coefficients

plus the variant, the curve mode and the harmonic count H. Arrays are
read-only after construction, so one store can serve any number of
concurrent queries without locking.

Key items:
  - AtlasStore.query(): k nearest entries to a target descriptor
  - AtlasMatch.fit_to(): stored linkage moved onto the target's geometry
  - AtlasStore.save() / AtlasStore.load(): NPZ persistence
  - AtlasStore.merge(): concatenate two stores of the same variant/mode
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import numpy as np

from configs.logging_config import get_logger
from configs.paths import ATLAS_DIR
from fourbar_tools.descriptor import align
from fourbar_tools.descriptor import Descriptor
from fourbar_tools.descriptor import harmonic_weights
from fourbar_tools.descriptor import normalize
from fourbar_tools.kinematics import curve
from fourbar_tools.variants import CurveMode
from fourbar_tools.variants import layout
from fourbar_tools.variants import ParameterVector
from fourbar_tools.variants import Stat
from fourbar_tools.variants import Variant

logger = get_logger(__name__)


@dataclass(frozen=True)
class AtlasMatch:
    """
    One query result.

    Attributes:
        params: Stored normalized parameter vector (with its assembly state)
        distance: Descriptor distance to the query
        index: Row of the entry in the store
        mode: Curve mode the store was built for
    """
    params: ParameterVector
    distance: float
    index: int
    mode: CurveMode

    def fit_to(self, target: Descriptor, res: int = 180) -> ParameterVector:
        """
        Full mechanism of this entry moved onto the target's position, size and orientation.

        Args:
            target: Descriptor of the target curve (its pose is used)
            res: Samples used to regenerate the entry's curve
        """
        points = curve(self.params, self.mode, res)
        _, transform = align(normalize(points, self.mode, target.harmonic), target)
        return self.params.to_full(transform)


def _readonly(array: np.ndarray, dtype) -> np.ndarray:
    array = np.array(array, dtype=dtype)
    array.flags.writeable = False
    return array


class AtlasStore:
    """
    Precomputed nearest-neighbour store for one variant and curve mode.

    Example:
        >>> store = build_atlas(Variant.PLANAR, 256, mode=CurveMode.CLOSED)
        >>> matches = store.query(normalize(target_points, CurveMode.CLOSED), k=5)
        >>> seeds = np.array([m.params.values for m in matches])
    """

    def __init__(
        self,
        variant: Variant,
        mode: CurveMode,
        harmonic: int,
        codes: np.ndarray,
        stat: np.ndarray,
        efd: np.ndarray,
    ):
        self.variant = Variant(variant)
        self.mode = CurveMode(mode)
        self.harmonic = int(harmonic)
        n_params = len(layout(self.variant, True))
        width = self.harmonic * 2 * self.variant.dim
        codes = np.asarray(codes, dtype=np.float64).reshape(-1, n_params)
        stat = np.asarray(stat).reshape(-1)
        efd = np.asarray(efd, dtype=np.float64).reshape(-1, width)
        if not (len(codes) == len(stat) == len(efd)):
            raise ValueError(f'atlas arrays disagree in length: {len(codes)}, {len(stat)}, {len(efd)}')
        self.codes = _readonly(codes, np.float64)
        self.stat = _readonly(stat, np.uint8)
        self.efd = _readonly(efd, np.float64)

    @classmethod
    def empty(cls, variant: Variant, mode: CurveMode, harmonic: int) -> AtlasStore:
        width = harmonic * 2 * Variant(variant).dim
        return cls(variant, mode, harmonic, np.empty((0, len(layout(variant, True)))), np.empty(0), np.empty((0, width)))

    def __len__(self) -> int:
        return len(self.codes)

    def __repr__(self) -> str:
        return f'AtlasStore(variant={self.variant.value}, mode={self.mode.value}, harmonic={self.harmonic}, entries={len(self)})'

    @property
    def is_empty(self) -> bool:
        return len(self) == 0

    @property
    def coefficients(self) -> np.ndarray:
        """Read-only (N, H, 2, dim) view of the stored descriptors."""
        return self.efd.reshape(len(self), self.harmonic, 2, self.variant.dim)

    def entry(self, index: int) -> ParameterVector:
        return ParameterVector(self.variant, self.codes[index], normalized=True, stat=Stat(int(self.stat[index])))

    # -------------------------------------------------------------------------
    # Query
    # -------------------------------------------------------------------------

    def distances(self, target: Descriptor, weights=None) -> np.ndarray:
        """
        Descriptor distance from every entry to ``target``.

        Every canonical form of the target is compared; stored and target
        coefficients are zero padded to a common harmonic count.
        """
        if target.dim != self.variant.dim:
            raise ValueError(f'{target.dim}D descriptor cannot query a {self.variant.value} atlas')
        harmonic = max(self.harmonic, target.harmonic)
        stored = self.coefficients
        if harmonic > self.harmonic:
            stored = np.concatenate([stored, np.zeros((len(self), harmonic - self.harmonic, 2, self.variant.dim))], axis=1)
        w = harmonic_weights(weights, harmonic)
        best = np.full(len(self), np.inf)
        for coeffs, _ in target.forms():
            padded = np.zeros((harmonic, 2, self.variant.dim))
            padded[:len(coeffs)] = coeffs
            diff = stored - padded
            best = np.minimum(best, np.sqrt(np.einsum('k,nk->n', w, np.sum(diff * diff, axis=(2, 3)))))
        return best

    def query(self, target: Descriptor, k: int = 1, weights=None) -> list[AtlasMatch]:
        """
        The ``k`` entries closest to ``target``, nearest first.

        Ties keep insertion order. An empty store returns an empty list.
        """
        if k < 0:
            raise ValueError(f'k must be non-negative, got {k}')
        if self.is_empty or k == 0:
            return []
        dist = self.distances(target, weights)
        order = np.argsort(dist, kind='stable')[:k]
        return [AtlasMatch(self.entry(int(i)), float(dist[i]), int(i), self.mode) for i in order]

    # -------------------------------------------------------------------------
    # Combination / persistence
    # -------------------------------------------------------------------------

    def merge(self, other: AtlasStore) -> AtlasStore:
        """New store with the entries of ``self`` followed by those of ``other``."""
        if other.variant is not self.variant or other.mode is not self.mode:
            raise ValueError(
                f'cannot merge {other.variant.value}/{other.mode.value} into {self.variant.value}/{self.mode.value}',
            )
        harmonic = max(self.harmonic, other.harmonic)

        def padded(store: AtlasStore) -> np.ndarray:
            coeffs = np.zeros((len(store), harmonic, 2, store.variant.dim))
            coeffs[:, :store.harmonic] = store.coefficients
            return coeffs.reshape(len(store), -1)

        return AtlasStore(
            self.variant,
            self.mode,
            harmonic,
            np.concatenate([self.codes, other.codes]),
            np.concatenate([self.stat, other.stat]),
            np.concatenate([padded(self), padded(other)]),
        )

    @staticmethod
    def default_path(variant: Variant, mode: CurveMode) -> Path:
        """Location under ATLAS_DIR used when ``save`` is given no path."""
        return ATLAS_DIR / f'{Variant(variant).value}_{CurveMode(mode).value}.npz'

    def save(self, path: Path | str | None = None) -> Path:
        """Write the store as a compressed NPZ file; returns the path written."""
        path = Path(path) if path is not None else self.default_path(self.variant, self.mode)
        if path.suffix != '.npz':
            path = path.with_suffix('.npz')
        path.parent.mkdir(parents=True, exist_ok=True)
        np.savez_compressed(
            path,
            codes=self.codes,
            stat=self.stat,
            efd=self.efd,
            variant=np.array(self.variant.value),
            mode=np.array(self.mode.value),
            harmonic=np.array(self.harmonic),
        )
        logger.info(f'Saved {self!r} to {path}')
        return path

    @classmethod
    def load(cls, path: Path | str) -> AtlasStore:
        """
        Read a store written by ``save``.

        Raises:
            ValueError: missing arrays or shapes inconsistent with the metadata
        """
        with np.load(Path(path), allow_pickle=False) as data:
            missing = {'codes', 'stat', 'efd', 'variant', 'mode', 'harmonic'} - set(data.files)
            if missing:
                raise ValueError(f'{path} is not an atlas file, missing arrays: {sorted(missing)}')
            variant = Variant(str(data['variant']))
            mode = CurveMode(str(data['mode']))
            harmonic = int(data['harmonic'])
            codes, stat, efd = data['codes'], data['stat'], data['efd']
        n_params = len(layout(variant, True))
        width = harmonic * 2 * variant.dim
        if codes.ndim != 2 or codes.shape[1] != n_params:
            raise ValueError(f'codes must have shape (N, {n_params}), got {codes.shape}')
        if efd.ndim != 2 or efd.shape[1] != width:
            raise ValueError(f'efd must have shape (N, {width}), got {efd.shape}')
        store = cls(variant, mode, harmonic, codes, stat, efd)
        logger.info(f'Loaded {store!r} from {path}')
        return store
