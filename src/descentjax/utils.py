"""Numerical helpers shared by the dynamics and aerodynamics models.

The norm helpers use the "double where" construction so that both the
value and its forward-mode derivative stay finite when the argument is the
zero vector.  A plain ``jnp.linalg.norm`` has an undefined derivative at
zero, which would poison an entire segment Jacobian with NaNs.
"""

from __future__ import annotations

import jax.numpy as jnp
from jax import Array
from jax.typing import ArrayLike

from descentjax.config import get_degeneracy_epsilon, get_dtype
from descentjax.constants import N_STATE, QUAT_IDX


def safe_norm(v: ArrayLike, eps: float | None = None) -> tuple[Array, Array]:
    """Euclidean norm with a finite derivative at the origin.

    Args:
        v: Vector of shape ``(n,)``.
        eps: Norm below which *v* is treated as degenerate. Defaults to
            :func:`~descentjax.config.get_degeneracy_epsilon`.

    Returns:
        tuple: ``(norm, valid)`` where *valid* is a boolean scalar that is
            ``False`` when ``|v| <= eps``.  In that case *norm* is 0.
    """
    if eps is None:
        eps = get_degeneracy_epsilon()
    v = jnp.asarray(v)
    sq = jnp.dot(v, v)
    valid = sq > eps * eps
    norm = jnp.sqrt(jnp.where(valid, sq, 1.0))
    return jnp.where(valid, norm, 0.0), valid


def safe_normalize(v: ArrayLike, eps: float | None = None) -> Array:
    """Unit vector along *v*, or the zero vector when *v* is degenerate.

    Args:
        v: Vector of shape ``(n,)``.
        eps: Degeneracy threshold, see :func:`safe_norm`.

    Returns:
        Unit vector of shape ``(n,)``, or zeros.
    """
    v = jnp.asarray(v)
    norm, valid = safe_norm(v, eps)
    return jnp.where(valid, v / jnp.where(valid, norm, 1.0), jnp.zeros_like(v))


def normalize_state(state: ArrayLike) -> Array:
    """Renormalize the quaternion portion of a vehicle state vector.

    The propagators never renormalize the attitude quaternion, so its norm
    drifts slightly over a segment.  Callers that feed propagated states
    back in as new reference points can use this helper.

    Args:
        state: Vehicle state of shape ``(14,)``.

    Returns:
        State with unit-norm quaternion, shape ``(14,)``.

    Raises:
        ValueError: If *state* does not have 14 elements.

    Examples:
        ```python
        import jax.numpy as jnp
        x = jnp.zeros(14).at[7].set(1.001)
        float(jnp.linalg.norm(normalize_state(x)[7:11]))
        ```
    """
    state = jnp.asarray(state, dtype=get_dtype())
    if state.shape != (N_STATE,):
        raise ValueError(f"state must have shape ({N_STATE},), got {state.shape}")

    q = state[QUAT_IDX]
    return state.at[QUAT_IDX].set(q / jnp.linalg.norm(q))
