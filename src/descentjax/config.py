"""Module-wide floating-point precision configuration.

Provides ``set_dtype`` and ``get_dtype`` to control the float dtype used
throughout descentjax.  The default is ``jnp.float32`` for GPU/TPU
compatibility, but the linearization engines are meant to run in double
precision: the adaptive sensitivity path works with tolerances close to
machine precision.  Switching to ``jnp.float64`` automatically enables
JAX's 64-bit mode (``jax_enable_x64``).

Call ``set_dtype`` **before** any JIT compilation, just like JAX's own
``jax.config.update("jax_enable_x64", True)``.  Under JIT, ``get_dtype()``
runs during tracing and its result is baked into the compiled program.
Caches created before a dtype change keep their compiled programs, so
create fresh caches after calling ``set_dtype``.
"""

from __future__ import annotations

import jax
import jax.numpy as jnp

_VALID_DTYPES = (jnp.float16, jnp.bfloat16, jnp.float32, jnp.float64)

_dtype = jnp.float32


def set_dtype(dtype) -> None:
    """Set the module-wide float dtype for descentjax.

    Must be called **before** any ``jax.jit`` compilation.  In eager mode
    the change takes effect immediately.

    If *dtype* is ``jnp.float64``, JAX's 64-bit mode is automatically
    enabled via ``jax.config.update("jax_enable_x64", True)``.

    Args:
        dtype: One of ``jnp.float16``, ``jnp.bfloat16``, ``jnp.float32``,
            or ``jnp.float64``.

    Raises:
        ValueError: If *dtype* is not a supported float type.
    """
    global _dtype
    if dtype not in _VALID_DTYPES:
        raise ValueError(
            f"Unsupported dtype {dtype}. Must be one of: "
            f"jnp.float16, jnp.bfloat16, jnp.float32, jnp.float64"
        )
    if dtype == jnp.float64:
        jax.config.update("jax_enable_x64", True)
    _dtype = dtype


def get_dtype():
    """Return the current module-wide float dtype.

    Returns:
        The active float dtype (default ``jnp.float32``).
    """
    return _dtype


def default_adaptive_tolerance() -> float:
    """Return the dtype-adaptive default tolerance of the adaptive solver.

    The high-fidelity sensitivity path integrates with tolerances just
    above the round-off floor of the configured dtype:

    - ``float64``:  1e-12
    - ``float32``:  1e-5
    - ``float16``:  1e-2
    - ``bfloat16``: 1e-2

    Returns:
        float: Absolute and relative tolerance used by
            :class:`~descentjax.integrators.AdaptiveConfig` when none is
            given explicitly.
    """
    if _dtype == jnp.float64:
        return 1e-12
    if _dtype == jnp.float32:
        return 1e-5
    # float16 and bfloat16
    return 1e-2


def get_degeneracy_epsilon() -> float:
    """Return the norm below which a direction vector is treated as zero.

    Used by the lateral-control basis and the thrust-magnitude guard of
    the state derivative.

    - ``float64``:  1e-9
    - ``float32``:  1e-5
    - ``float16``:  1e-2
    - ``bfloat16``: 1e-2

    Returns:
        float: Degeneracy threshold for vector norms.
    """
    if _dtype == jnp.float64:
        return 1e-9
    if _dtype == jnp.float32:
        return 1e-5
    return 1e-2
