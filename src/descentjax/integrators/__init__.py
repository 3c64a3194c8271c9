"""Numerical integrators for segment propagation.

Provides a fixed-step and an adaptive Runge-Kutta integrator, all
implemented in JAX for compatibility with ``jax.jit`` and automatic
differentiation.

- :func:`rk4_step` / :func:`rk4_integrate` -- classic 4th-order
  Runge-Kutta with a static number of steps.
- :func:`propagate_segment_rk4` -- RK4 across one control segment.
- :func:`dp54_solve` / :func:`make_dp54_solver` -- Dormand-Prince 5(4)
  over a whole interval in one ``lax.while_loop``.

Right-hand sides share the signature ``rhs(t, y, args) -> dy/dt``.
"""

from descentjax.integrators._types import (
    AdaptiveConfig,
    IntegrationError,
    SolveResult,
    SolverStatus,
)
from descentjax.integrators.dp54 import dp54_attempt, dp54_solve, make_dp54_solver
from descentjax.integrators.rk4 import propagate_segment_rk4, rk4_integrate, rk4_step

__all__ = [
    "AdaptiveConfig",
    "IntegrationError",
    "SolveResult",
    "SolverStatus",
    "rk4_step",
    "rk4_integrate",
    "propagate_segment_rk4",
    "dp54_attempt",
    "dp54_solve",
    "make_dp54_solver",
]
