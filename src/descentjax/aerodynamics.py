"""Aerodynamic force and torque models.

The state derivative treats the aerodynamic model as a black box that maps
the body axis (expressed in the inertial frame), the inertial velocity and
the speed of sound to a force and a body torque.  Any object satisfying
:class:`AerodynamicModel` can be plugged into
:class:`~descentjax.params.VehicleParams`; it must be written with
``jax.numpy`` so that it can be traced and differentiated in forward mode.

Two models are provided:

- :class:`ZeroAerodynamics` -- no aerodynamic force or torque (vacuum).
- :class:`ConstantCoefficientAerodynamics` -- quadratic drag and normal
  force with constant coefficients, intended for tests and examples.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import NamedTuple, Protocol, runtime_checkable

import jax.numpy as jnp
from jax import Array
from jax.typing import ArrayLike

from descentjax.utils import safe_norm


@runtime_checkable
class AerodynamicModel(Protocol):
    """Interface of the aerodynamic collaborator."""

    def force_torque(
        self, body_axis: ArrayLike, velocity: ArrayLike, sos: float
    ) -> tuple[Array, Array]:
        """Aerodynamic force (inertial frame) and body torque."""
        ...

    def drag_coefficient(self, cos_aoa: ArrayLike, mach: ArrayLike) -> Array:
        """Drag coefficient at the given angle-of-attack cosine and Mach number."""
        ...

    def lift_coefficient(self, cos_aoa: ArrayLike, mach: ArrayLike) -> Array:
        """Lift coefficient at the given angle-of-attack cosine and Mach number."""
        ...

    def torque_coefficient(self, cos_aoa: ArrayLike, mach: ArrayLike) -> Array:
        """Pitching torque coefficient at the given angle-of-attack cosine and Mach number."""
        ...


class AeroCoefficients(NamedTuple):
    """Scalar aerodynamic coefficients at one flight condition.

    Attributes:
        drag: Drag coefficient.
        lift: Lift coefficient.
        torque: Torque coefficient.
    """

    drag: Array
    lift: Array
    torque: Array


def effective_cos_aoa(axial_speed: ArrayLike, mach: ArrayLike, sos: float) -> Array:
    """Cosine of the angle of attack recovered from the axial speed.

    ``axial_speed`` is the velocity component along the body axis, so for a
    positive Mach number the cosine is ``axial_speed / (mach * sos)``,
    clamped to ``[-1, 1]``.  At zero Mach the angle is undefined and 0 is
    returned.

    Args:
        axial_speed: Velocity component along the body axis [m/s].
        mach: Mach number.
        sos: Speed of sound [m/s].

    Returns:
        jax.Array: Clamped angle-of-attack cosine.
    """
    mach = jnp.asarray(mach)
    moving = mach > 0.0
    ratio = jnp.asarray(axial_speed) / jnp.where(moving, mach * sos, 1.0)
    return jnp.where(moving, jnp.clip(ratio, -1.0, 1.0), 0.0)


def aero_coefficients(
    model: AerodynamicModel,
    axial_speed: ArrayLike,
    mach: ArrayLike,
    sos: float,
) -> AeroCoefficients:
    """Evaluate the drag, lift and torque coefficients of *model*.

    Args:
        model: Aerodynamic model.
        axial_speed: Velocity component along the body axis [m/s].
        mach: Mach number.
        sos: Speed of sound [m/s].

    Returns:
        AeroCoefficients: Coefficients at the effective angle of attack.
    """
    cos_aoa = effective_cos_aoa(axial_speed, mach, sos)
    return AeroCoefficients(
        drag=model.drag_coefficient(cos_aoa, mach),
        lift=model.lift_coefficient(cos_aoa, mach),
        torque=model.torque_coefficient(cos_aoa, mach),
    )


@dataclass(frozen=True)
class ZeroAerodynamics:
    """Aerodynamic model producing no force and no torque."""

    def force_torque(self, body_axis, velocity, sos):
        v = jnp.asarray(velocity)
        return jnp.zeros_like(v), jnp.zeros_like(v)

    def drag_coefficient(self, cos_aoa, mach):
        return jnp.zeros_like(jnp.asarray(cos_aoa))

    def lift_coefficient(self, cos_aoa, mach):
        return jnp.zeros_like(jnp.asarray(cos_aoa))

    def torque_coefficient(self, cos_aoa, mach):
        return jnp.zeros_like(jnp.asarray(cos_aoa))


@dataclass(frozen=True)
class ConstantCoefficientAerodynamics:
    """Quadratic aerodynamics with constant coefficients.

    With dynamic pressure ``q = 0.5 * rho * |v|^2``, unit velocity
    ``v_hat`` and body axis ``b``::

        F_drag   = -q * S * cd * v_hat
        F_normal =  q * S * cl * cos(aoa) * (b - cos(aoa) * v_hat)
        tau      =  q * S * L * cm * cos(aoa) * (b x v_hat)

    The normal force vanishes when the body axis is aligned with or
    perpendicular to the flow.  The model has no Mach dependence.

    Args:
        rho: Air density [kg/m^3].
        area: Reference area [m^2].
        cd: Drag coefficient.
        cl: Normal-force coefficient slope.
        cm: Torque coefficient slope.
        ref_length: Reference length for the torque [m].

    Examples:
        ```python
        import jax.numpy as jnp
        aero = ConstantCoefficientAerodynamics(rho=1.2, area=2.0, cd=0.8)
        f, tau = aero.force_torque(
            jnp.array([1.0, 0.0, 0.0]), jnp.array([-50.0, 0.0, 0.0]), 340.0
        )
        ```
    """

    rho: float = 1.225
    area: float = 1.0
    cd: float = 0.5
    cl: float = 0.0
    cm: float = 0.0
    ref_length: float = 1.0

    def drag_coefficient(self, cos_aoa, mach):
        return jnp.full_like(jnp.asarray(cos_aoa), self.cd)

    def lift_coefficient(self, cos_aoa, mach):
        return self.cl * jnp.asarray(cos_aoa)

    def torque_coefficient(self, cos_aoa, mach):
        return self.cm * jnp.asarray(cos_aoa)

    def force_torque(self, body_axis, velocity, sos):
        b = jnp.asarray(body_axis)
        v = jnp.asarray(velocity)

        speed, moving = safe_norm(v)
        v_hat = jnp.where(moving, v / jnp.where(moving, speed, 1.0), 0.0)
        mach = speed / sos

        coeffs = aero_coefficients(self, jnp.dot(b, v), mach, sos)
        cos_aoa = effective_cos_aoa(jnp.dot(b, v), mach, sos)
        qs = 0.5 * self.rho * speed * speed * self.area

        force = qs * (-coeffs.drag * v_hat + coeffs.lift * (b - cos_aoa * v_hat))
        torque = qs * self.ref_length * coeffs.torque * jnp.cross(b, v_hat)
        return force, torque
