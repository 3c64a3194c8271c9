"""Quaternion kinematics kernels.

Pure JAX functions used by the state derivative:

- :func:`direction_cosine_matrix` -- body-to-inertial rotation matrix of a
  scalar-first unit quaternion.
- :func:`quaternion_rate_operator` -- the 4x4 Omega matrix of a body
  angular rate.
- :func:`quaternion_derivative` -- ``0.5 * Omega(omega) @ q``.

All kernels work unchanged on plain arrays, under ``jax.jit`` and under
forward-mode differentiation.
"""

from __future__ import annotations

import jax.numpy as jnp
from jax import Array
from jax.typing import ArrayLike


def direction_cosine_matrix(q: ArrayLike) -> Array:
    """Rotation matrix mapping body-frame vectors into the inertial frame.

    The quaternion is **not** renormalized; a quaternion that has drifted
    off the unit sphere yields a correspondingly scaled matrix.

    Args:
        q: Quaternion ``[w, x, y, z]`` of shape ``(4,)``.

    Returns:
        Direction-cosine matrix of shape ``(3, 3)``.

    Examples:
        ```python
        import jax.numpy as jnp
        C = direction_cosine_matrix(jnp.array([1.0, 0.0, 0.0, 0.0]))
        C  # identity
        ```
    """
    q = jnp.asarray(q)
    q0, q1, q2, q3 = q[0], q[1], q[2], q[3]

    p1 = q1 * q2
    p2 = q0 * q3
    p3 = q1 * q3
    p4 = q0 * q2
    p5 = q2 * q3
    p6 = q0 * q1

    return jnp.array([
        [1.0 - 2.0 * (q2 * q2 + q3 * q3), 2.0 * (p1 - p2), 2.0 * (p3 + p4)],
        [2.0 * (p1 + p2), 1.0 - 2.0 * (q1 * q1 + q3 * q3), 2.0 * (p5 - p6)],
        [2.0 * (p3 - p4), 2.0 * (p5 + p6), 1.0 - 2.0 * (q1 * q1 + q2 * q2)],
    ])


def quaternion_rate_operator(omega: ArrayLike) -> Array:
    """Skew-symmetric quaternion rate operator of a body angular rate.

    For scalar-first ``[w, x, y, z]`` quaternions::

            [  0   -wx  -wy  -wz ]
        O = [ wx    0    wz  -wy ]
            [ wy  -wz    0    wx ]
            [ wz   wy  -wx    0  ]

    so that ``q_dot = 0.5 * O @ q``.

    Args:
        omega: Body angular velocity ``[wx, wy, wz]`` of shape ``(3,)``
            [rad/s].

    Returns:
        Operator matrix of shape ``(4, 4)``.
    """
    omega = jnp.asarray(omega)
    wx, wy, wz = omega[0], omega[1], omega[2]
    z = jnp.zeros_like(wx)

    return jnp.array([
        [z, -wx, -wy, -wz],
        [wx, z, wz, -wy],
        [wy, -wz, z, wx],
        [wz, wy, -wx, z],
    ])


def quaternion_derivative(q: ArrayLike, omega: ArrayLike) -> Array:
    """Quaternion time-derivative ``0.5 * Omega(omega) @ q``.

    Args:
        q: Quaternion ``[w, x, y, z]`` of shape ``(4,)``.
        omega: Body angular velocity of shape ``(3,)`` [rad/s].

    Returns:
        Quaternion derivative of shape ``(4,)``.
    """
    return 0.5 * quaternion_rate_operator(omega) @ jnp.asarray(q)
