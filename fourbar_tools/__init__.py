"""
fourbar_tools - Four-bar linkage kinematics and curve shape descriptors.

Key components:
  - ParameterVector / Variant / CurveMode: tagged mechanism parameters
  - curve: closed-form coupler curve of a linkage
  - normalize / distance / reconstruct: elliptical Fourier descriptors
  - synthesize (fourbar_tools.synthesize): fit a linkage to a target curve

Example usage:
    from fourbar_tools import ParameterVector, Variant, CurveMode, curve, normalize, distance
    from fourbar_tools.synthesize import synthesize

    target = curve(known_linkage, CurveMode.CLOSED, 360)
    params, fitted, fitness = synthesize(target, CurveMode.CLOSED, Variant.PLANAR)
    d = distance(normalize(fitted, CurveMode.CLOSED), normalize(target, CurveMode.CLOSED))

The synthesis entry points are not re-exported here: they pull in the
optimizers package, which itself depends on this package's error types.
"""
from __future__ import annotations

from fourbar_tools.descriptor import align
from fourbar_tools.descriptor import Descriptor
from fourbar_tools.descriptor import distance
from fourbar_tools.descriptor import match_partial
from fourbar_tools.descriptor import normalize
from fourbar_tools.descriptor import reconstruct
from fourbar_tools.errors import DegenerateCurve
from fourbar_tools.errors import EmptyTargetCurve
from fourbar_tools.errors import InfeasibleMechanism
from fourbar_tools.errors import InvalidParameterVector
from fourbar_tools.errors import NoStoppingRule
from fourbar_tools.errors import SynthesisError
from fourbar_tools.geometry import Similarity
from fourbar_tools.kinematics import curve
from fourbar_tools.kinematics import joint_positions
from fourbar_tools.kinematics import poses
from fourbar_tools.linkage_states import AngleBound
from fourbar_tools.linkage_states import classify
from fourbar_tools.linkage_states import FourBarType
from fourbar_tools.variants import CurveMode
from fourbar_tools.variants import ParameterVector
from fourbar_tools.variants import Stat
from fourbar_tools.variants import Variant

__all__ = [
    # Parameters
    'Variant',
    'CurveMode',
    'Stat',
    'ParameterVector',
    'Similarity',
    # Linkage model
    'curve',
    'poses',
    'joint_positions',
    'AngleBound',
    'FourBarType',
    'classify',
    # Shape descriptor
    'Descriptor',
    'normalize',
    'distance',
    'align',
    'reconstruct',
    'match_partial',
    # Errors
    'SynthesisError',
    'InfeasibleMechanism',
    'InvalidParameterVector',
    'EmptyTargetCurve',
    'DegenerateCurve',
    'NoStoppingRule',
]
