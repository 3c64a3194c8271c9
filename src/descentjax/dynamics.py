"""Six-degree-of-freedom powered-descent dynamics.

Provides the nonlinear state derivative of a rigid vehicle driven by
thrust, aerodynamics, lateral aerodynamic surfaces and uniform gravity,
together with the pieces the segment propagators are assembled from:

- :func:`state_derivative` -- the 14-element derivative, scaled by a
  time multiplier.
- :func:`interpolate_control` -- first-order hold between the two control
  anchors of a segment.
- :func:`velocity_alignment_constraint` -- scalar state-triggered
  constraint evaluated by the outer optimizer.
- :func:`create_segment_dynamics` and :func:`create_variational_dynamics`
  -- right-hand-side factories in normalized segment time, compatible
  with the integrators in :mod:`descentjax.integrators`.

Every function is written with ``jax.numpy`` only, so it runs unchanged on
plain arrays, under ``jax.jit`` and under forward-mode differentiation.
"""

from __future__ import annotations

from collections.abc import Callable

import jax
import jax.numpy as jnp
from jax import Array
from jax.typing import ArrayLike

from descentjax.config import get_dtype
from descentjax.constants import (
    AUG_SIGMA_IDX,
    AUG_STATE_IDX,
    AUG_UK_IDX,
    AUG_UP_IDX,
    LATERAL_IDX,
    MASS_IDX,
    N_AUGMENTED,
    N_CONTROL,
    N_STATE,
    OMEGA_IDX,
    QUAT_IDX,
    THRUST_IDX,
    VEL_IDX,
)
from descentjax.kinematics import direction_cosine_matrix, quaternion_derivative
from descentjax.params import VehicleParams
from descentjax.utils import safe_norm, safe_normalize

DerivativeFn = Callable[[Array, Array, Array], Array]
"""Signature ``derivative(state, control, mult) -> state_dot``."""

SegmentRHS = Callable[[Array, Array, tuple], Array]
"""Signature ``rhs(tau, y, (uk, up, sigma)) -> y_dot`` in normalized time."""


def interpolate_control(fraction: ArrayLike, start: ArrayLike, end: ArrayLike) -> Array:
    """Linear blend of the two control anchors of a segment.

    ``(1 - fraction) * start + fraction * end``.  The fraction is not
    clamped: values outside ``[0, 1]`` extrapolate.

    Args:
        fraction: Normalized time within the segment.
        start: Control at the start of the segment.
        end: Control at the end of the segment.

    Returns:
        Interpolated control, same shape as *start*.
    """
    return (1.0 - fraction) * jnp.asarray(start) + fraction * jnp.asarray(end)


def lateral_control_basis(C: ArrayLike, velocity: ArrayLike) -> tuple[Array, Array]:
    """Directions of the two lateral aerodynamic-surface forces.

    The first direction is the normalized cross product of the body y-axis
    (rotated into the inertial frame) with the velocity; the second is the
    cross product of the first with the velocity.

    When the first cross product is degenerate (zero airspeed, or velocity
    along the body y-axis) both directions are zero: the surfaces have no
    authority.

    Args:
        C: Body-to-inertial direction-cosine matrix, shape ``(3, 3)``.
        velocity: Inertial velocity, shape ``(3,)`` [m/s].

    Returns:
        tuple: ``(d1, d2)``, each of shape ``(3,)``.
    """
    C = jnp.asarray(C)
    v = jnp.asarray(velocity)

    d1 = safe_normalize(jnp.cross(C[:, 1], v))
    d2 = jnp.cross(d1, v)
    return d1, d2


def state_derivative(
    state: ArrayLike,
    control: ArrayLike,
    mult: ArrayLike,
    params: VehicleParams,
) -> Array:
    """Time-derivative of the vehicle state, scaled by *mult*.

    Components, before scaling::

        m_dot     = -alpha * |T|
        r_dot     = v
        v_dot     = (C T + F_aero + F_lat) / m - g0 * e1
        q_dot     = 0.5 * Omega(w) q
        w_dot     = J^-1 (r_T x T + r_F x F_lat + tau_aero - w x J w)

    where ``C`` is the body-to-inertial rotation of ``q``, ``T`` the body
    thrust and ``F_lat = d1 * e_1 + d2 * e_2`` the lateral-surface force
    (see :func:`lateral_control_basis`).

    The multiplier folds the segment time scaling into the derivative; the
    propagators pass ``sigma * dt`` (or a fraction of it) so the derivative
    is taken with respect to normalized segment time.

    Args:
        state: Vehicle state of shape ``(14,)``.
        control: Control ``[Tx, Ty, Tz, d1, d2]`` of shape ``(5,)``.
        mult: Scalar time multiplier.
        params: Vehicle parameters.

    Returns:
        State derivative of shape ``(14,)``.

    Raises:
        ValueError: If *state* or *control* has the wrong shape.

    Examples:
        ```python
        import jax.numpy as jnp
        params = VehicleParams(alpha=1e-4, g0=9.81)
        x = jnp.array([1000.0, 0, 0, 0, 100.0, 0, 0, 1.0, 0, 0, 0, 0, 0, 0])
        u = jnp.array([0.0, 0.0, 5000.0, 0.0, 0.0])
        state_derivative(x, u, 1.0, params)
        ```
    """
    _float = get_dtype()
    state = jnp.asarray(state, dtype=_float)
    control = jnp.asarray(control, dtype=_float)
    if state.shape != (N_STATE,):
        raise ValueError(f"state must have shape ({N_STATE},), got {state.shape}")
    if control.shape != (N_CONTROL,):
        raise ValueError(f"control must have shape ({N_CONTROL},), got {control.shape}")

    mass = state[MASS_IDX]
    v = state[VEL_IDX]
    q = state[QUAT_IDX]
    omega = state[OMEGA_IDX]
    thrust = control[THRUST_IDX]
    deflection = control[LATERAL_IDX]

    C = direction_cosine_matrix(q)

    aero_force, aero_torque = params.aero.force_torque(C[:, 0], v, params.sos)

    d1, d2 = lateral_control_basis(C, v)
    lateral_force = deflection[0] * d1 + deflection[1] * d2

    # Translational
    acc = (C @ thrust + aero_force + lateral_force) / mass
    acc = acc.at[0].add(-params.g0)

    # Rotational
    torque = (
        jnp.cross(params.r_T_B, thrust)
        + jnp.cross(params.r_F_B, lateral_force)
        + aero_torque
    )
    omega_dot = params.J_B_inv @ (torque - jnp.cross(omega, params.J_B @ omega))

    thrust_mag, _ = safe_norm(thrust)
    mass_dot = -params.alpha * thrust_mag

    dx = jnp.concatenate([
        jnp.atleast_1d(mass_dot),
        v,
        acc,
        quaternion_derivative(q, omega),
        omega_dot,
    ])
    return dx * mult


def make_state_derivative(params: VehicleParams) -> DerivativeFn:
    """Bind *params* into a ``derivative(state, control, mult)`` callable.

    Args:
        params: Vehicle parameters.

    Returns:
        The state derivative with parameters closed over.
    """

    def derivative(state, control, mult):
        return state_derivative(state, control, mult, params)

    return derivative


def velocity_alignment_constraint(
    state: ArrayLike,
    v_activation: ArrayLike,
    cos_max: ArrayLike,
) -> Array:
    """State-triggered velocity alignment constraint.

    ``-(v_activation - |v|) * (cos_max * |v| + v_B[0])`` where ``v_B`` is
    the velocity expressed in the body frame.  The outer optimizer keeps
    this value non-positive: above the activation speed the body axis must
    stay within the cone set by ``cos_max`` around the velocity.

    Args:
        state: Vehicle state of shape ``(14,)``.
        v_activation: Speed at which the constraint switches on [m/s].
        cos_max: Cosine parameter of the alignment cone.

    Returns:
        jax.Array: Scalar constraint value.
    """
    state = jnp.asarray(state, dtype=get_dtype())
    v = state[VEL_IDX]
    speed, _ = safe_norm(v)
    v_body = direction_cosine_matrix(state[QUAT_IDX]).T @ v
    return -(v_activation - speed) * (cos_max * speed + v_body[0])


def create_segment_dynamics(dt: float, derivative: DerivativeFn) -> SegmentRHS:
    """Right-hand side of one segment in normalized time ``tau in [0, 1]``.

    The returned ``rhs(tau, x, (uk, up, sigma))`` interpolates the control
    anchors at ``tau`` and scales the derivative by ``sigma * dt``.

    Args:
        dt: Nominal segment duration [s].
        derivative: ``derivative(state, control, mult)``, e.g. from
            :func:`make_state_derivative`.

    Returns:
        Segment right-hand side.
    """

    def rhs(tau, x, args):
        uk, up, sigma = args
        return derivative(x, interpolate_control(tau, uk, up), sigma * dt)

    return rhs


def create_variational_dynamics(dt: float, derivative: DerivativeFn) -> SegmentRHS:
    """Segment dynamics augmented with their variational equations.

    The integrated vector is ``y = [x, vec(Phi)]`` where ``Phi`` is the
    ``(14, 25)`` sensitivity of the current state to the augmented input
    ``[x0, uk, up, sigma]``::

        Phi_dot = df/dx @ Phi + [0 | df/d(uk, up, sigma)]

    Local derivatives are exact, taken with ``jax.jacfwd`` of the segment
    right-hand side.  Start from ``Phi = [I | 0]``.

    Args:
        dt: Nominal segment duration [s].
        derivative: ``derivative(state, control, mult)``.

    Returns:
        Right-hand side for vectors of length ``14 + 14 * 25``.
    """

    def rhs(tau, y, args):
        uk, up, sigma = args
        x = y[:N_STATE]
        phi = y[N_STATE:].reshape(N_STATE, N_AUGMENTED)

        def f(z):
            u = interpolate_control(tau, z[AUG_UK_IDX], z[AUG_UP_IDX])
            dx = derivative(z[AUG_STATE_IDX], u, z[AUG_SIGMA_IDX] * dt)
            return dx, dx

        z = jnp.concatenate([x, uk, up, jnp.atleast_1d(sigma)])
        jac, fx = jax.jacfwd(f, has_aux=True)(z)

        dphi = jac[:, AUG_STATE_IDX] @ phi + jac.at[:, AUG_STATE_IDX].set(0.0)
        return jnp.concatenate([fx, dphi.ravel()])

    return rhs


def pack_augmented_input(
    state: ArrayLike,
    uk: ArrayLike,
    up: ArrayLike,
    sigma: ArrayLike,
) -> Array:
    """Concatenate ``[state, uk, up, sigma]`` into the 25-element input.

    Raises:
        ValueError: If any part has the wrong length.
    """
    _float = get_dtype()
    state = jnp.asarray(state, dtype=_float)
    uk = jnp.asarray(uk, dtype=_float)
    up = jnp.asarray(up, dtype=_float)
    sigma = jnp.asarray(sigma, dtype=_float)

    if state.shape != (N_STATE,):
        raise ValueError(f"state must have shape ({N_STATE},), got {state.shape}")
    for name, u in (("uk", uk), ("up", up)):
        if u.shape != (N_CONTROL,):
            raise ValueError(f"{name} must have shape ({N_CONTROL},), got {u.shape}")
    if sigma.size != 1:
        raise ValueError(f"sigma must be a scalar, got shape {sigma.shape}")

    return jnp.concatenate([state, uk, up, sigma.reshape(1)])


def unpack_augmented_input(inp: ArrayLike) -> tuple[Array, Array, Array, Array]:
    """Split a 25-element augmented input into ``(state, uk, up, sigma)``.

    Raises:
        ValueError: If *inp* does not have shape ``(25,)``.
    """
    inp = jnp.asarray(inp, dtype=get_dtype())
    if inp.shape != (N_AUGMENTED,):
        raise ValueError(f"augmented input must have shape ({N_AUGMENTED},), got {inp.shape}")
    return inp[AUG_STATE_IDX], inp[AUG_UK_IDX], inp[AUG_UP_IDX], inp[AUG_SIGMA_IDX]
