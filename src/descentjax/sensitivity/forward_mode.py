"""Forward-mode sensitivity of the fixed-step segment propagator.

``jax.linearize`` evaluates the RK4 propagator once and returns its
tangent map; mapping that over a seed basis gives the full ``(14, 25)``
Jacobian in a single compiled call, one tangent direction per input
dimension.
"""

from __future__ import annotations

from collections.abc import Callable

import jax
import jax.numpy as jnp
from jax import Array

from descentjax.config import get_dtype
from descentjax.constants import N_AUGMENTED
from descentjax.dynamics import DerivativeFn
from descentjax.integrators import propagate_segment_rk4
from descentjax.params import VehicleParams


def seed_basis() -> Array:
    """Identity seed directions over the augmented input, shape ``(25, 25)``."""
    return jnp.eye(N_AUGMENTED, dtype=get_dtype())


def make_segment_propagator(
    params: VehicleParams,
    dt: float,
    substeps: int,
    derivative: DerivativeFn,
) -> Callable[[Array], Array]:
    """Bind the RK4 segment propagator to fixed settings.

    Returns:
        ``propagate(inp) -> state`` over the 25-element augmented input.
    """

    def propagate(inp):
        return propagate_segment_rk4(inp, dt, params, substeps=substeps, derivative=derivative)

    return propagate


def value_and_jacobian(propagate: Callable[[Array], Array]):
    """Build ``f(inp, seeds) -> (value, jacobian)`` for *propagate*.

    Args:
        propagate: Function of the augmented input.

    Returns:
        A function returning the propagated value and the Jacobian
        ``J @ seeds.T``; with the identity basis this is the full Jacobian.
    """

    def fn(inp, seeds):
        value, tangent = jax.linearize(propagate, inp)
        return value, jax.vmap(tangent)(seeds).T

    return fn


def make_forward_propagators(
    params: VehicleParams,
    dt: float,
    substeps: int,
    derivative: DerivativeFn,
):
    """Compiled plain and value-and-Jacobian segment propagators.

    Returns:
        tuple: ``(propagate, propagate_with_jacobian)``, both jitted.
    """
    propagate = make_segment_propagator(params, dt, substeps, derivative)
    return jax.jit(propagate), jax.jit(value_and_jacobian(propagate))
