"""Error control for the embedded Runge-Kutta solver.

1. Normalize the embedded error estimate with mixed absolute/relative
   tolerances; the step is acceptable when the result is <= 1.0.
2. Predict the next step size from the normalized error and the order of
   the error estimator.

Non-finite error estimates are mapped to the smallest step reduction so
the step-size recurrence itself never produces NaN.
"""

from __future__ import annotations

import jax.numpy as jnp
from jax import Array
from jax.typing import ArrayLike

from descentjax.integrators._types import AdaptiveConfig


def compute_error_norm(
    error_vec: ArrayLike,
    state_new: ArrayLike,
    state_old: ArrayLike,
    abs_tol: float,
    rel_tol: float,
) -> Array:
    """Normalized infinity norm of an embedded error estimate.

    .. math::

        \\text{err} = \\max_i \\frac{|e_i|}{\\text{abs\\_tol} + \\text{rel\\_tol}
            \\cdot \\max(|y^{\\text{new}}_i|, |y^{\\text{old}}_i|)}

    Args:
        error_vec: Difference between the high- and low-order solutions.
        state_new: High-order solution.
        state_old: State at the start of the step.
        abs_tol: Absolute error tolerance.
        rel_tol: Relative error tolerance.

    Returns:
        jax.Array: Scalar normalized error. NaN if any input is NaN.
    """
    scale = abs_tol + rel_tol * jnp.maximum(jnp.abs(state_new), jnp.abs(state_old))
    return jnp.max(jnp.abs(error_vec) / scale)


def compute_next_step_size(
    error: ArrayLike,
    h: ArrayLike,
    order: float,
    config: AdaptiveConfig,
) -> Array:
    """Step size to try after a step of size *h* with normalized *error*.

    ``h * clip(S * error^(-1/(order+1)), min_scale, max_scale)``, clamped to
    ``[min_step, max_step]``. Zero error grows the step by the maximum
    scale factor; a non-finite error shrinks it by the minimum.

    Args:
        error: Normalized error from :func:`compute_error_norm`.
        h: Step size just attempted (positive).
        order: Order of the error estimator.
        config: Step-size control settings.

    Returns:
        jax.Array: Suggested next step size.
    """
    error = jnp.asarray(error)
    h = jnp.asarray(h)

    finite = jnp.isfinite(error)
    positive = finite & (error > 0.0)
    safe_error = jnp.where(positive, error, 1.0)

    scale = config.safety_factor * jnp.power(safe_error, -1.0 / (order + 1.0))
    scale = jnp.where(positive, scale, config.max_scale_factor)
    scale = jnp.where(finite, scale, config.min_scale_factor)
    scale = jnp.clip(scale, config.min_scale_factor, config.max_scale_factor)

    return jnp.clip(h * scale, config.min_step, config.max_step)
