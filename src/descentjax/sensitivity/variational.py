"""Adaptive propagation with variational sensitivity equations.

The high-accuracy linearization path integrates the segment state jointly
with its ``(14, 25)`` sensitivity matrix using the Dormand-Prince solver:

.. math::

    \\dot{\\Phi} = \\frac{\\partial f}{\\partial x} \\Phi
        + \\left[ 0 \\mid \\frac{\\partial f}{\\partial (u_k, u_p, \\sigma)} \\right],
    \\qquad \\Phi(0) = [I_{14} \\mid 0]

so the Jacobian of the end state is read directly off the solution.
"""

from __future__ import annotations

import jax.numpy as jnp
from jax import Array
from jax.typing import ArrayLike

from descentjax.config import get_dtype
from descentjax.constants import N_AUGMENTED, N_STATE
from descentjax.dynamics import (
    DerivativeFn,
    create_segment_dynamics,
    create_variational_dynamics,
)
from descentjax.integrators import AdaptiveConfig, make_dp54_solver


def initial_sensitivity() -> Array:
    """Sensitivity of the initial state to the augmented input, ``[I | 0]``."""
    return jnp.eye(N_STATE, N_AUGMENTED, dtype=get_dtype())


def augment_state(x0: ArrayLike) -> Array:
    """Stack ``x0`` with the flattened initial sensitivity."""
    x0 = jnp.asarray(x0, dtype=get_dtype())
    return jnp.concatenate([x0, initial_sensitivity().ravel()])


def split_augmented_state(y: ArrayLike) -> tuple[Array, Array]:
    """Split an integrated vector into ``(state, jacobian)``."""
    y = jnp.asarray(y)
    return y[:N_STATE], y[N_STATE:].reshape(N_STATE, N_AUGMENTED)


def make_adaptive_propagator(dt: float, derivative: DerivativeFn, config: AdaptiveConfig):
    """Compiled adaptive solve of the state alone over one segment.

    Returns:
        A jitted ``solve(x0, (uk, up, sigma), h0) -> SolveResult``.
    """
    return make_dp54_solver(create_segment_dynamics(dt, derivative), config)


def make_variational_propagator(dt: float, derivative: DerivativeFn, config: AdaptiveConfig):
    """Compiled adaptive solve of the state and its sensitivity.

    The initial vector is built with :func:`augment_state`.

    Returns:
        A jitted ``solve(y0, (uk, up, sigma), h0) -> SolveResult``.
    """
    return make_dp54_solver(create_variational_dynamics(dt, derivative), config)
