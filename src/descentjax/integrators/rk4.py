"""Classic 4th-order Runge-Kutta segment propagation.

The Butcher tableau for RK4 is:

.. math::

    \\begin{array}{c|cccc}
    0   &     &     &     &   \\\\
    1/2 & 1/2 &     &     &   \\\\
    1/2 &  0  & 1/2 &     &   \\\\
    1   &  0  &  0  &  1  &   \\\\
    \\hline
        & 1/6 & 1/3 & 1/3 & 1/6
    \\end{array}

:func:`propagate_segment_rk4` applies a fixed number of RK4 substeps
across one control segment with ``jax.lax.fori_loop``. The trip count is
static, so the propagation is jittable and differentiable in forward and
reverse mode.
"""

from __future__ import annotations

from collections.abc import Callable

import jax
import jax.numpy as jnp
from jax import Array
from jax.typing import ArrayLike

from descentjax.config import get_dtype
from descentjax.constants import DEFAULT_RK4_SUBSTEPS
from descentjax.dynamics import (
    DerivativeFn,
    create_segment_dynamics,
    make_state_derivative,
    unpack_augmented_input,
)
from descentjax.params import VehicleParams


def rk4_step(
    rhs: Callable[[Array, Array, object], Array],
    t: ArrayLike,
    y: ArrayLike,
    h: ArrayLike,
    args=None,
) -> Array:
    """Advance ``y`` from ``t`` to ``t + h`` with one classic RK4 step.

    Args:
        rhs: Right-hand side ``rhs(t, y, args) -> dy/dt``.
        t: Current time.
        y: Current state vector.
        h: Step size.
        args: Extra arguments passed through to *rhs*.

    Returns:
        jax.Array: State at ``t + h``.

    Examples:
        ```python
        import jax.numpy as jnp
        from descentjax.integrators import rk4_step
        def harmonic(t, x, _):
            return jnp.array([x[1], -x[0]])
        rk4_step(harmonic, 0.0, jnp.array([1.0, 0.0]), 0.01)  # ~[cos(0.01), -sin(0.01)]
        ```
    """
    k1 = rhs(t, y, args)
    k2 = rhs(t + 0.5 * h, y + 0.5 * h * k1, args)
    k3 = rhs(t + 0.5 * h, y + 0.5 * h * k2, args)
    k4 = rhs(t + h, y + h * k3, args)
    return y + (h / 6.0) * (k1 + 2.0 * k2 + 2.0 * k3 + k4)


def rk4_integrate(
    rhs: Callable[[Array, Array, object], Array],
    y0: ArrayLike,
    args=None,
    substeps: int = DEFAULT_RK4_SUBSTEPS,
    t_final: float = 1.0,
) -> Array:
    """Integrate over ``[0, t_final]`` with exactly *substeps* RK4 steps.

    Args:
        rhs: Right-hand side ``rhs(t, y, args) -> dy/dt``.
        y0: Initial state vector.
        args: Extra arguments passed through to *rhs*.
        substeps: Number of equal steps (static, >= 1).
        t_final: End of the integration interval.

    Returns:
        jax.Array: State at ``t_final``.

    Raises:
        ValueError: If *substeps* is not a positive integer.
    """
    if int(substeps) != substeps or substeps < 1:
        raise ValueError(f"substeps must be a positive integer, got {substeps}")
    substeps = int(substeps)

    dtype = get_dtype()
    y0 = jnp.asarray(y0, dtype=dtype)
    h = jnp.asarray(t_final / substeps, dtype=dtype)

    def body(i, y):
        return rk4_step(rhs, i * h, y, h, args)

    return jax.lax.fori_loop(0, substeps, body, y0)


def propagate_segment_rk4(
    inp: ArrayLike,
    dt: float,
    params: VehicleParams,
    substeps: int = DEFAULT_RK4_SUBSTEPS,
    derivative: DerivativeFn | None = None,
) -> Array:
    """Propagate the state across one control segment with fixed-step RK4.

    The segment is integrated in normalized time ``tau in [0, 1]`` with
    derivative multiplier ``sigma * dt``, which is equivalent to
    *substeps* physical steps of size ``sigma * dt / substeps``. Controls
    are interpolated linearly between ``uk`` and ``up`` at the start,
    midpoint and end of each substep.

    Args:
        inp: Augmented input ``[x0, uk, up, sigma]`` of shape ``(25,)``.
        dt: Nominal segment duration [s].
        params: Vehicle parameters.
        substeps: Number of RK4 substeps.
        derivative: Optional ``derivative(state, control, mult)`` replacing
            :func:`~descentjax.dynamics.state_derivative`, e.g. a compiled
            form from :func:`~descentjax.compiled.compile_dynamics`.

    Returns:
        jax.Array: State at the end of the segment, shape ``(14,)``.

    Raises:
        ValueError: If *inp* does not have shape ``(25,)``.

    Examples:
        ```python
        import jax.numpy as jnp
        from descentjax import VehicleParams, pack_augmented_input
        params = VehicleParams(alpha=1e-4, g0=9.81)
        x0 = jnp.array([1000.0, 0, 0, 0, 100.0, 0, 0, 1.0, 0, 0, 0, 0, 0, 0])
        u = jnp.array([0.0, 0.0, 5000.0, 0.0, 0.0])
        propagate_segment_rk4(pack_augmented_input(x0, u, u, 1.0), 1.0, params)
        ```
    """
    x0, uk, up, sigma = unpack_augmented_input(inp)
    if derivative is None:
        derivative = make_state_derivative(params)

    rhs = create_segment_dynamics(dt, derivative)
    return rk4_integrate(rhs, x0, (uk, up, sigma), substeps=substeps)
