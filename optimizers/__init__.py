"""
Optimizer implementations for four-bar curve synthesis.

Every heuristic runs behind the same interface:
- solve(objective, bounds, config, *, seeds, callback, cancel) -> SolveResult
- objective maps a normalized parameter vector to a fitness (lower is better)

Available optimizers:
- de: Differential evolution (rand/1/bin), the default
- pso: Global-best particle swarm
- scipy: Local refinement of a population result (scipy.optimize.minimize)
"""
from __future__ import annotations

from optimizers.differential_evolution import DifferentialEvolution
from optimizers.population import get_heuristic
from optimizers.population import log_generation_progress
from optimizers.population import solve
from optimizers.pso import ParticleSwarm
from optimizers.scipy_optimizer import refine
from optimizers.scipy_optimizer import RefineResult
from optimizers.scipy_optimizer import ScipyConfig
from optimizers.solver_types import GenerationSnapshot
from optimizers.solver_types import SolverConfig
from optimizers.solver_types import SolveResult

# Registry of available optimizers
AVAILABLE_OPTIMIZERS = {
    'de': {
        'class': DifferentialEvolution,
        'description': 'Differential evolution (rand/1/bin) with greedy selection',
        'package': 'numpy',
        'gradient': False,
        'global': True,
    },
    'pso': {
        'class': ParticleSwarm,
        'description': 'Global-best particle swarm with velocity clamping',
        'package': 'numpy',
        'gradient': False,
        'global': True,
    },
    'scipy': {
        'function': refine,
        'description': 'Bounded local refinement (Nelder-Mead, Powell, L-BFGS-B)',
        'package': 'scipy',
        'gradient': False,
        'global': False,
    },
}

__all__ = [
    'solve',
    'get_heuristic',
    'log_generation_progress',
    'SolverConfig',
    'SolveResult',
    'GenerationSnapshot',
    'DifferentialEvolution',
    'ParticleSwarm',
    'refine',
    'RefineResult',
    'ScipyConfig',
    'AVAILABLE_OPTIMIZERS',
]
