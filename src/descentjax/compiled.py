"""Compiled forms of the vehicle dynamics.

:func:`compile_dynamics` traces the state derivative and the velocity
alignment constraint for one set of vehicle parameters and compiles them
with XLA, folding the parameters in as constants. The resulting
:class:`CompiledDynamics` is an ordinary value owned by the caller; pass
its ``derivative`` to any propagator or linearization routine that
accepts a ``derivative`` argument.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

import jax
import jax.numpy as jnp
from jax.typing import ArrayLike

from descentjax.config import get_dtype
from descentjax.dynamics import (
    DerivativeFn,
    make_state_derivative,
    state_derivative,
    velocity_alignment_constraint,
)
from descentjax.params import VehicleParams

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class CompiledDynamics:
    """Jitted dynamics for a fixed set of vehicle parameters.

    Attributes:
        params: Parameters the functions were compiled for.
        derivative: ``derivative(state, control, mult) -> state_dot``.
        observation: ``observation(state, v_activation, cos_max) -> scalar``,
            the velocity alignment constraint.
        observation_jacobian: Gradient of ``observation`` with respect to
            the state, same signature, shape ``(14,)``.
    """

    params: VehicleParams
    derivative: DerivativeFn
    observation: Callable
    observation_jacobian: Callable

    def validate(
        self,
        state: ArrayLike,
        control: ArrayLike,
        mult: float = 1.0,
        rtol: float | None = None,
    ) -> bool:
        """Compare the compiled derivative with the op-by-op evaluation.

        Args:
            state: Test state, shape ``(14,)``.
            control: Test control, shape ``(5,)``.
            mult: Time multiplier.
            rtol: Relative tolerance. Defaults to the square root of the
                active dtype's machine epsilon.

        Returns:
            bool: ``True`` when both agree. A mismatch is logged as a
            warning.
        """
        if rtol is None:
            rtol = float(jnp.finfo(get_dtype()).eps) ** 0.5

        compiled = self.derivative(state, control, mult)
        with jax.disable_jit():
            reference = state_derivative(state, control, mult, self.params)

        scale = jnp.maximum(jnp.max(jnp.abs(reference)), 1.0)
        err = float(jnp.max(jnp.abs(compiled - reference)) / scale)
        ok = err <= rtol
        if not ok:
            logger.warning(
                "Compiled dynamics deviate from the reference derivative: "
                "relative error %.3e exceeds %.3e",
                err,
                rtol,
            )
        return ok


def compile_dynamics(params: VehicleParams) -> CompiledDynamics:
    """Compile the dynamics for *params*.

    Args:
        params: Vehicle parameters.

    Returns:
        CompiledDynamics: The jitted derivative and observation functions.

    Examples:
        ```python
        params = VehicleParams(alpha=1e-4, g0=9.81)
        dyn = compile_dynamics(params)
        dyn.validate(x0, u0)
        linearize_dynamics_rk4(points, 1.0, 0.5, params, derivative=dyn.derivative)
        ```
    """
    logger.debug("Compiling dynamics")
    return CompiledDynamics(
        params=params,
        derivative=jax.jit(make_state_derivative(params)),
        observation=jax.jit(velocity_alignment_constraint),
        observation_jacobian=jax.jit(jax.grad(velocity_alignment_constraint)),
    )
