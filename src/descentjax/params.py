"""Vehicle and environment parameters.

:class:`VehicleParams` bundles everything the state derivative needs
besides the state and control: the mass-depletion coefficient, gravity,
the speed of sound, the inertia tensor and its inverse, the thrust and
aerodynamic-surface moment arms, and the aerodynamic model.

Parameters are immutable and shared read-only by every propagation and
linearization call.  Building them from a higher-level problem definition
is the caller's job.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import jax.numpy as jnp
from jax import Array

from descentjax.aerodynamics import AerodynamicModel, ZeroAerodynamics
from descentjax.config import get_dtype


def _vector3(name: str, value) -> Array:
    arr = jnp.asarray(value, dtype=get_dtype())
    if arr.shape != (3,):
        raise ValueError(f"{name} must have shape (3,), got {arr.shape}")
    return arr


@dataclass(frozen=True, eq=False)
class VehicleParams:
    """Immutable vehicle/environment parameters.

    Gravity acts along the negative first inertial axis with magnitude
    ``g0``.  Moment arms are expressed in the body frame relative to the
    centre of mass.

    Args:
        alpha: Mass-flow per unit thrust, ``m_dot = -alpha * |T|`` [s/m].
        g0: Gravity magnitude [m/s^2].
        sos: Speed of sound [m/s].
        J_B: Body inertia tensor of shape ``(3, 3)`` [kg m^2].
        J_B_inv: Inverse inertia tensor. Computed from ``J_B`` if omitted.
        r_T_B: Thrust application point [m], shape ``(3,)``.
        r_F_B: Lateral aerodynamic-surface application point [m],
            shape ``(3,)``.
        aero: Aerodynamic model.

    Raises:
        ValueError: If any array has the wrong shape or ``sos`` is not
            positive.

    Examples:
        ```python
        params = VehicleParams.from_principal(
            1e-4, 9.81, 10.0, 20.0, 20.0, r_T_B=[0.0, 0.0, -1.0]
        )
        params.J_B_inv.shape
        ```
    """

    alpha: float = 0.0
    g0: float = 9.81
    sos: float = 340.0
    J_B: Array = field(default_factory=lambda: jnp.eye(3, dtype=get_dtype()))
    J_B_inv: Array | None = None
    r_T_B: Array = field(default_factory=lambda: jnp.zeros(3, dtype=get_dtype()))
    r_F_B: Array = field(default_factory=lambda: jnp.zeros(3, dtype=get_dtype()))
    aero: AerodynamicModel = field(default_factory=ZeroAerodynamics)

    def __post_init__(self):
        J_B = jnp.asarray(self.J_B, dtype=get_dtype())
        if J_B.shape != (3, 3):
            raise ValueError(f"J_B must have shape (3, 3), got {J_B.shape}")
        if self.J_B_inv is None:
            J_B_inv = jnp.linalg.inv(J_B)
        else:
            J_B_inv = jnp.asarray(self.J_B_inv, dtype=get_dtype())
            if J_B_inv.shape != (3, 3):
                raise ValueError(f"J_B_inv must have shape (3, 3), got {J_B_inv.shape}")
        if self.sos <= 0.0:
            raise ValueError(f"sos must be positive, got {self.sos}")
        if not isinstance(self.aero, AerodynamicModel):
            raise ValueError(f"aero does not implement AerodynamicModel: {self.aero!r}")

        # Frozen dataclass: normalize fields through object.__setattr__
        object.__setattr__(self, "J_B", J_B)
        object.__setattr__(self, "J_B_inv", J_B_inv)
        object.__setattr__(self, "r_T_B", _vector3("r_T_B", self.r_T_B))
        object.__setattr__(self, "r_F_B", _vector3("r_F_B", self.r_F_B))

    @staticmethod
    def from_principal(
        alpha: float,
        g0: float,
        Jxx: float,
        Jyy: float,
        Jzz: float,
        *,
        sos: float = 340.0,
        r_T_B=(0.0, 0.0, 0.0),
        r_F_B=(0.0, 0.0, 0.0),
        aero: AerodynamicModel | None = None,
    ) -> VehicleParams:
        """Create parameters with a diagonal inertia tensor.

        Args:
            alpha: Mass-flow per unit thrust [s/m].
            g0: Gravity magnitude [m/s^2].
            Jxx: Moment of inertia about the body x-axis [kg m^2].
            Jyy: Moment of inertia about the body y-axis [kg m^2].
            Jzz: Moment of inertia about the body z-axis [kg m^2].
            sos: Speed of sound [m/s].
            r_T_B: Thrust application point [m].
            r_F_B: Lateral aerodynamic-surface application point [m].
            aero: Aerodynamic model, :class:`ZeroAerodynamics` if ``None``.

        Returns:
            VehicleParams: Parameters with ``J_B = diag(Jxx, Jyy, Jzz)``.
        """
        J_B = jnp.diag(jnp.array([Jxx, Jyy, Jzz], dtype=get_dtype()))
        return VehicleParams(
            alpha=alpha,
            g0=g0,
            sos=sos,
            J_B=J_B,
            r_T_B=r_T_B,
            r_F_B=r_F_B,
            aero=ZeroAerodynamics() if aero is None else aero,
        )
