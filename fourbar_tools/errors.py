"""
errors.py - Exception taxonomy for synthesis.

Feasibility problems are recoverable and never escape the objective
function; structural and configuration problems are raised immediately
to the caller.

  - SynthesisError: base class for everything raised by this package
  - InfeasibleMechanism: the linkage cannot be assembled / driven
  - InvalidParameterVector: wrong length or shape for the declared variant
  - EmptyTargetCurve: too few usable points in a target curve
  - DegenerateCurve: target points are coincident (zero perimeter)
  - NoStoppingRule: optimizer configured without any stopping rule

Cancellation is not an error: results carry a ``cancelled`` flag.
"""
from __future__ import annotations


class SynthesisError(Exception):
    """Base class for synthesis errors."""


class InfeasibleMechanism(SynthesisError):
    """Assembly condition violated for a parameter vector."""

    def __init__(self, message: str = 'linkage cannot be assembled', *, reason: str | None = None):
        super().__init__(message)
        self.reason = reason


class InvalidParameterVector(SynthesisError, ValueError):
    """Parameter vector does not match the layout of its variant."""


class EmptyTargetCurve(SynthesisError, ValueError):
    """Target curve has fewer than the minimum number of usable points."""


class DegenerateCurve(EmptyTargetCurve):
    """Target curve points are all coincident."""


class NoStoppingRule(SynthesisError, ValueError):
    """Optimizer configuration has no max_generations, target_fitness or time_budget."""
