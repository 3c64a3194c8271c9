"""Segment linearization engines and their caches.

- :func:`linearize_dynamics` -- variational equations integrated with the
  adaptive Dormand-Prince solver.
- :func:`linearize_dynamics_rk4` -- forward-mode AD of fixed-step RK4.
- :func:`linearize_phases` -- multi-phase trajectories with one time
  dilation per phase.
- :func:`predict_state` -- adaptive propagation without sensitivity.
- :class:`Linearizer` -- compiled dynamics, cache and parameters bundled for
  repeated use.
"""

from descentjax.sensitivity._types import LinearizationResult, TrajectoryPoint
from descentjax.sensitivity.cache import (
    AdaptiveSolverHandle,
    ForwardModeEntry,
    IntegratorCache,
    JacobianCache,
    NumericKind,
)
from descentjax.sensitivity.linearize import (
    Linearizer,
    initialize_linearizer,
    linearize_dynamics,
    linearize_dynamics_rk4,
    linearize_phases,
    predict_state,
)

__all__ = [
    "TrajectoryPoint",
    "LinearizationResult",
    "NumericKind",
    "AdaptiveSolverHandle",
    "ForwardModeEntry",
    "IntegratorCache",
    "JacobianCache",
    "Linearizer",
    "initialize_linearizer",
    "linearize_dynamics",
    "linearize_dynamics_rk4",
    "linearize_phases",
    "predict_state",
]
